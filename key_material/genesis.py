"""Genesis allocation fragments for generated accounts."""

from typing import Dict, Iterable

from .models import KeyRecord

DEFAULT_BALANCE_WEI = 10_000 * 10**18


def build_allocation(
    records: Iterable[KeyRecord], balance_wei: int = DEFAULT_BALANCE_WEI
) -> Dict[str, Dict[str, str]]:
    if balance_wei < 0:
        raise ValueError("Genesis balance must be non-negative.")
    return {record.address: {"balance": str(balance_wei)} for record in records}


def merge_into_chainspec(
    chainspec: Dict[str, object],
    allocation: Dict[str, Dict[str, str]],
    section: str = "accounts",
) -> Dict[str, object]:
    """Return a copy of ``chainspec`` with ``allocation`` merged into ``section``.

    Existing entries for other addresses are preserved; entries for the same
    address are replaced by the new allocation.
    """
    existing = chainspec.get(section, {})
    if not isinstance(existing, dict):
        raise ValueError(f"Chainspec section '{section}' must be an object.")
    merged = dict(chainspec)
    merged[section] = {**existing, **allocation}
    return merged
