"""Random key pair generation."""

import logging
import secrets
from typing import Callable, Iterator, Optional, Set

from .models import PRIVATE_KEY_BYTES, KeyPair

logger = logging.getLogger(__name__)

# Order of the secp256k1 group; valid secrets lie in [1, n).
SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class EntropyError(RuntimeError):
    """Raised when key generation cannot obtain randomness."""


class InsufficientEntropy(EntropyError):
    """Raised when the entropy source fails or returns short reads."""


class KeyMaterialGenerator:
    """Produces fresh, independent key pairs from a secure random source."""

    def __init__(
        self,
        entropy_provider: Optional[Callable[[int], bytes]] = None,
        max_redraws: int = 16,
    ) -> None:
        self._entropy_provider = entropy_provider or secrets.token_bytes
        self._max_redraws = max_redraws

    def generate(self, count: int) -> Iterator[KeyPair]:
        if count < 0:
            raise ValueError("Key count must be non-negative.")
        return self._generate(count)

    def _generate(self, count: int) -> Iterator[KeyPair]:
        seen: Set[bytes] = set()
        for position in range(count):
            secret = self._draw_secret(seen)
            seen.add(secret)
            key_pair = KeyPair.from_bytes(secret)
            logger.debug(f"Generated key {position + 1}/{count}: {key_pair.address}")
            yield key_pair

    def _draw_secret(self, seen: Set[bytes]) -> bytes:
        for _ in range(self._max_redraws):
            secret = self._read_entropy()
            scalar = int.from_bytes(secret, "big")
            if 0 < scalar < SECP256K1_ORDER and secret not in seen:
                return secret
        raise InsufficientEntropy(
            f"Entropy source produced no usable secret after {self._max_redraws} draws."
        )

    def _read_entropy(self) -> bytes:
        try:
            secret = self._entropy_provider(PRIVATE_KEY_BYTES)
        except (OSError, NotImplementedError) as exc:
            raise InsufficientEntropy(f"Entropy source unavailable: {exc}") from exc
        if not isinstance(secret, (bytes, bytearray)) or len(secret) < PRIVATE_KEY_BYTES:
            raise InsufficientEntropy("Entropy source returned a short read.")
        return bytes(secret[:PRIVATE_KEY_BYTES])
