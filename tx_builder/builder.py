"""Assemble unsigned transaction envelopes with batch-local nonce tracking."""

import logging
import threading
from typing import Callable, Dict, Optional, Union

from eth_utils import is_address, is_hex, to_bytes, to_checksum_address

from key_material.models import KeyPair

from .models import RenderedCall, TransactionEnvelope

logger = logging.getLogger(__name__)


class InvalidEnvelope(ValueError):
    """Raised when an envelope cannot be submitted as built."""


class InvalidTarget(InvalidEnvelope):
    """Raised when a target is neither empty nor a well-formed address."""


class NonceTracker:
    """Hands out strictly increasing nonces per sender address.

    The first request for an address seeds the counter from ``fetch_nonce``;
    later requests increment it locally. Each address has its own lock so
    that builds for different senders never wait on each other.
    """

    def __init__(self, fetch_nonce: Callable[[str], int]) -> None:
        self._fetch_nonce = fetch_nonce
        self._registry_lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._next: Dict[str, int] = {}

    def next_nonce(self, address: str) -> int:
        with self._lock_for(address):
            if address not in self._next:
                self._next[address] = int(self._fetch_nonce(address))
                logger.debug(f"Seeded nonce for {address} at {self._next[address]}")
            nonce = self._next[address]
            self._next[address] = nonce + 1
            return nonce

    def pending(self, address: str) -> int:
        with self._lock_for(address):
            return self._next.get(address, 0)

    def release(self, address: str) -> None:
        with self._lock_for(address):
            self._next.pop(address, None)

    def reset(self) -> None:
        with self._registry_lock:
            self._locks.clear()
            self._next.clear()

    def _lock_for(self, address: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(address)
            if lock is None:
                lock = threading.Lock()
                self._locks[address] = lock
            return lock


class TransactionBuilder:
    """Builds envelopes for one batch run; create a new builder per batch."""

    def __init__(self, fetch_nonce: Callable[[str], int]) -> None:
        self._nonces = NonceTracker(fetch_nonce)

    def build(
        self,
        sender: KeyPair,
        target: Optional[str],
        payload: Union[bytes, str, None] = b"",
        value: int = 0,
        gas_limit: int = 21_000,
    ) -> TransactionEnvelope:
        to = normalize_target(target)
        data = _payload_bytes(payload)
        _check_amounts(to, data, value, gas_limit)
        nonce = self._nonces.next_nonce(sender.address)
        return TransactionEnvelope(
            sender=sender.address,
            to=to,
            value=value,
            data=data,
            gas_limit=gas_limit,
            nonce=nonce,
        )

    def build_rendered(self, sender: KeyPair, call: RenderedCall) -> TransactionEnvelope:
        return self.build(
            sender,
            call.target,
            payload=call.payload,
            value=call.value,
            gas_limit=call.gas_limit,
        )

    def release(self, address: str) -> None:
        self._nonces.release(address)

    def reset(self) -> None:
        self._nonces.reset()


def normalize_target(target: Optional[str]) -> Optional[str]:
    if target is None or target == "":
        return None
    if not isinstance(target, str) or not is_address(target):
        raise InvalidTarget(f"Invalid target address: {target!r}")
    return to_checksum_address(target)


def validate_envelope(envelope: TransactionEnvelope) -> None:
    """Check an already-built envelope before it is signed."""
    if not is_address(envelope.sender):
        raise InvalidEnvelope(f"Invalid sender address: {envelope.sender!r}")
    if not envelope.is_contract_creation:
        normalize_target(envelope.to)
    if envelope.nonce < 0:
        raise InvalidEnvelope("Nonce must be non-negative.")
    _check_amounts(envelope.to, envelope.data, envelope.value, envelope.gas_limit)


def _payload_bytes(payload: Union[bytes, str, None]) -> bytes:
    if payload is None or payload == "":
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str) and is_hex(payload):
        return to_bytes(hexstr=payload)
    raise InvalidEnvelope("Payload must be bytes or hex encoded text.")


def _check_amounts(to: Optional[str], data: bytes, value: int, gas_limit: int) -> None:
    if value < 0:
        raise InvalidEnvelope("Value must be non-negative.")
    if gas_limit <= 0:
        raise InvalidEnvelope("Gas limit must be positive.")
    if to is None and not data:
        raise InvalidEnvelope("Contract creation requires a payload.")
