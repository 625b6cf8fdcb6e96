"""Submission items, per-item results and the batch report."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from key_material.models import KeyPair
from tx_builder.models import TransactionEnvelope


class SubmissionStatus(Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class ItemState(Enum):
    QUEUED = "QUEUED"
    SIGNING = "SIGNING"
    BROADCASTING = "BROADCASTING"
    RETRYING = "RETRYING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class BatchItem:
    key_pair: KeyPair
    envelope: TransactionEnvelope


@dataclass(frozen=True)
class SubmissionResult:
    envelope: TransactionEnvelope
    status: SubmissionStatus = SubmissionStatus.PENDING
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "sender": self.envelope.sender,
            "nonce": self.envelope.nonce,
            "to": self.envelope.to,
            "kind": _kind(self.envelope),
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "reason": self.reason,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class BatchReport:
    results: Tuple[SubmissionResult, ...]
    threshold_exceeded: bool = False
    cancelled: bool = False

    @property
    def counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SubmissionStatus}
        for result in self.results:
            counts[result.status.value] += 1
        return counts

    @property
    def all_confirmed(self) -> bool:
        return all(result.status == SubmissionStatus.CONFIRMED for result in self.results)

    @property
    def any_rejected(self) -> bool:
        return any(result.status == SubmissionStatus.REJECTED for result in self.results)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": len(self.results),
            "counts": self.counts,
            "threshold_exceeded": self.threshold_exceeded,
            "cancelled": self.cancelled,
            "results": [result.to_dict() for result in self.results],
        }


def _kind(envelope: TransactionEnvelope) -> str:
    if envelope.is_contract_creation:
        return "deploy"
    if envelope.is_value_transfer:
        return "transfer"
    return "call"


def rejected_fraction(results: Sequence[SubmissionResult]) -> float:
    if not results:
        return 0.0
    rejected = sum(1 for result in results if result.status == SubmissionStatus.REJECTED)
    return rejected / len(results)
