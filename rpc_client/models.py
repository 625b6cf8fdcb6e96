"""Collaborator interface for signing and broadcasting transactions."""

from dataclasses import dataclass
from typing import Optional, Protocol

from tx_builder.models import TransactionEnvelope


@dataclass(frozen=True)
class SignedPayload:
    raw: bytes
    tx_hash: str


class RpcClient(Protocol):
    def chain_id(self) -> int:
        ...

    def get_nonce(self, address: str) -> int:
        ...

    def sign(self, envelope: TransactionEnvelope, private_key: str) -> SignedPayload:
        ...

    def broadcast(self, raw: bytes, timeout: Optional[float] = None) -> str:
        ...

    def get_receipt(self, tx_hash: str) -> Optional[dict]:
        ...

    def get_transaction(self, tx_hash: str) -> Optional[dict]:
        ...
