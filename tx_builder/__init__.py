from .builder import (
    InvalidEnvelope,
    InvalidTarget,
    NonceTracker,
    TransactionBuilder,
    normalize_target,
    validate_envelope,
)
from .models import RenderedCall, TransactionEnvelope
from .payload import PayloadError, TransactionTemplate, encode_call, encode_deploy

__all__ = [
    "InvalidEnvelope",
    "InvalidTarget",
    "NonceTracker",
    "PayloadError",
    "RenderedCall",
    "TransactionBuilder",
    "TransactionEnvelope",
    "TransactionTemplate",
    "encode_call",
    "encode_deploy",
    "normalize_target",
    "validate_envelope",
]
