"""Node-backed implementation of the RPC collaborator."""

import logging
import threading
from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address, to_hex

from tx_builder.models import TransactionEnvelope

from .jsonrpc import JsonRpcClient
from .models import SignedPayload

logger = logging.getLogger(__name__)


class NodeClient:
    """Signs locally with eth_account and talks to a node over JSON-RPC.

    Chain id and gas price are fetched once and cached; a fixed gas price
    may be supplied instead.
    """

    def __init__(
        self,
        rpc: JsonRpcClient,
        gas_price: Optional[int] = None,
        chain_id: Optional[int] = None,
    ) -> None:
        self._rpc = rpc
        self._gas_price = gas_price
        self._chain_id = chain_id
        self._cache_lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, timeout: float = 30, gas_price: Optional[int] = None) -> "NodeClient":
        return cls(JsonRpcClient(url, timeout=timeout), gas_price=gas_price)

    def chain_id(self) -> int:
        with self._cache_lock:
            if self._chain_id is None:
                self._chain_id = int(self._rpc.call("eth_chainId"), 16)
                logger.info(f"Connected to {self._rpc.url}, chainId={self._chain_id}")
            return self._chain_id

    def gas_price(self) -> int:
        with self._cache_lock:
            if self._gas_price is None:
                self._gas_price = int(self._rpc.call("eth_gasPrice"), 16)
            return self._gas_price

    def get_nonce(self, address: str) -> int:
        return int(self._rpc.call("eth_getTransactionCount", address, "pending"), 16)

    def sign(self, envelope: TransactionEnvelope, private_key: str) -> SignedPayload:
        tx = {
            "nonce": envelope.nonce,
            "gasPrice": self.gas_price(),
            "gas": envelope.gas_limit,
            "value": envelope.value,
            "data": envelope.data,
            "chainId": self.chain_id(),
        }
        if envelope.to is not None:
            tx["to"] = to_checksum_address(envelope.to)
        signed = Account.sign_transaction(tx, private_key)
        return SignedPayload(raw=bytes(signed.raw_transaction), tx_hash=to_hex(signed.hash))

    def broadcast(self, raw: bytes, timeout: Optional[float] = None) -> str:
        return self._rpc.call("eth_sendRawTransaction", to_hex(raw), timeout=timeout)

    def get_receipt(self, tx_hash: str) -> Optional[dict]:
        return self._rpc.call("eth_getTransactionReceipt", tx_hash)

    def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return self._rpc.call("eth_getTransactionByHash", tx_hash)
