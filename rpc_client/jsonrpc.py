"""
Simple JSON-RPC 2.0 client over HTTP.
"""

import itertools
import json
import logging
import threading
from typing import Any, Optional

import requests

# Node error messages that will not succeed on retry.
PERMANENT_MESSAGES = (
    "insufficient funds",
    "nonce too low",
    "intrinsic gas too low",
    "exceeds block gas limit",
    "invalid sender",
    "invalid transaction",
    "rlp",
)

# JSON-RPC codes for requests the node could not even interpret.
PERMANENT_CODES = (-32600, -32601, -32602, -32700)

ALREADY_KNOWN_MESSAGES = ("already known", "known transaction", "already imported")


class RpcError(Exception):
    """Raised when an RPC call returns an error."""

    def __init__(self, error: dict, permanent: Optional[bool] = None):
        self.code = error.get("code")
        self.message = error.get("message") or ""
        self.data = error.get("data")
        self.permanent = _is_permanent(self.code, self.message) if permanent is None else permanent
        super().__init__(f"RPC Error {self.code}: {self.message}")

    @property
    def already_known(self) -> bool:
        text = self.message.lower()
        return any(marker in text for marker in ALREADY_KNOWN_MESSAGES)

    @property
    def nonce_too_low(self) -> bool:
        return "nonce too low" in self.message.lower()


def _is_permanent(code: Any, message: str) -> bool:
    if code in PERMANENT_CODES:
        return True
    text = message.lower()
    return any(marker in text for marker in PERMANENT_MESSAGES)


class JsonRpcClient:
    """
    JSON-RPC 2.0 client.

    Usage:
        rpc = JsonRpcClient("http://localhost:8545")
        count = rpc.call("eth_getTransactionCount", address, "pending")

    Safe to share between worker threads; request ids come from a locked
    counter and each call opens its own request.
    """

    def __init__(self, url: str, name: Optional[str] = None, timeout: float = 30):
        self.url = url
        self.name = name or url
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self.logger = logging.getLogger(f"rpc.{self.name}")

    def call(self, method: str, *params, timeout: Optional[float] = None) -> Any:
        """
        Make a JSON-RPC call.

        Raises:
            RpcError: If the RPC returns an error
            requests.RequestException: If the HTTP request fails or times out
        """
        with self._id_lock:
            request_id = next(self._ids)

        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(params),
            "id": request_id,
        }

        self.logger.debug(f"RPC call: {method} id={request_id}")

        try:
            resp = requests.post(
                self.url,
                json=payload,
                timeout=self.timeout if timeout is None else timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            self.logger.warning(f"RPC request {method} failed: {e}")
            raise

        try:
            result = resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            self.logger.warning(f"Invalid JSON response: {resp.text}")
            raise RpcError({"code": -1, "message": f"Invalid JSON: {e}"}, permanent=False) from e

        if "error" in result:
            error = result.get("error") or {}
            self.logger.warning(f"RPC error from {method}: {error}")
            raise RpcError(error)

        return result.get("result")
