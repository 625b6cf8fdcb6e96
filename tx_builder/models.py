"""Unsigned transaction envelopes."""

from dataclasses import dataclass
from typing import Dict, Optional

from eth_utils import to_hex


@dataclass(frozen=True)
class TransactionEnvelope:
    sender: str
    to: Optional[str]
    value: int
    data: bytes
    gas_limit: int
    nonce: int

    @property
    def is_contract_creation(self) -> bool:
        return self.to is None

    @property
    def is_value_transfer(self) -> bool:
        return self.to is not None and not self.data

    def to_dict(self) -> Dict[str, object]:
        return {
            "from": self.sender,
            "to": self.to,
            "value": self.value,
            "data": to_hex(self.data) if self.data else "0x",
            "gas": self.gas_limit,
            "nonce": self.nonce,
        }


@dataclass(frozen=True)
class RenderedCall:
    """Per-row values produced from a transaction template."""

    target: Optional[str]
    payload: bytes
    value: int
    gas_limit: int
