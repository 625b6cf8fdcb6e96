"""Domain models for generated key material."""

from dataclasses import dataclass, field
from typing import Tuple

from eth_account import Account
from eth_utils import is_hex, remove_0x_prefix, to_checksum_address


PRIVATE_KEY_BYTES = 32


def normalize_private_key(value: str) -> str:
    """Return the key as lowercase 0x-prefixed hex, validating its shape."""
    text = value.strip()
    if not text or not is_hex(text):
        raise ValueError("Private key must be hex encoded.")
    digits = remove_0x_prefix(text).lower()
    if len(digits) != PRIVATE_KEY_BYTES * 2:
        raise ValueError(f"Private key must be {PRIVATE_KEY_BYTES} bytes.")
    return "0x" + digits


def derive_address(private_key: str) -> str:
    return Account.from_key(normalize_private_key(private_key)).address


@dataclass(frozen=True)
class KeyPair:
    """A private key and the checksummed address derived from it."""

    private_key: str
    address: str = field(init=False)

    def __post_init__(self) -> None:
        normalized = normalize_private_key(self.private_key)
        object.__setattr__(self, "private_key", normalized)
        object.__setattr__(self, "address", derive_address(normalized))

    @staticmethod
    def from_bytes(secret: bytes) -> "KeyPair":
        if len(secret) != PRIVATE_KEY_BYTES:
            raise ValueError(f"Private key must be {PRIVATE_KEY_BYTES} bytes.")
        return KeyPair(private_key="0x" + secret.hex())

    def __repr__(self) -> str:
        return f"KeyPair(address={self.address!r})"


@dataclass(frozen=True)
class KeyRecord:
    index: int
    private_key: str
    address: str

    @staticmethod
    def from_key_pair(index: int, key_pair: KeyPair) -> "KeyRecord":
        return KeyRecord(
            index=index,
            private_key=key_pair.private_key,
            address=key_pair.address,
        )

    def to_key_pair(self) -> KeyPair:
        key_pair = KeyPair(private_key=self.private_key)
        if key_pair.address != to_checksum_address(self.address):
            raise ValueError(f"Address {self.address} does not match its private key.")
        return key_pair

    def __repr__(self) -> str:
        return f"KeyRecord(index={self.index}, address={self.address!r})"


def records_from_key_pairs(key_pairs) -> Tuple[KeyRecord, ...]:
    return tuple(
        KeyRecord.from_key_pair(index, key_pair) for index, key_pair in enumerate(key_pairs)
    )
