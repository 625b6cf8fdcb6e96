"""Tests for the JSON-RPC transport and node client, without a network."""

import unittest
from unittest import mock

import requests
from eth_utils import keccak, to_hex

from rpc_client.jsonrpc import JsonRpcClient, RpcError
from rpc_client.node import NodeClient
from tx_builder.models import TransactionEnvelope

DOCS_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
DOCS_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
RECEIVER = "0x65e154ef9a2967e922936415bb0e2204be87b64c"


def _response(body):
    response = mock.Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = body
    response.text = str(body)
    return response


class FakeNode:
    """Routes patched requests.post calls by JSON-RPC method."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    def __call__(self, url, json=None, timeout=None):
        self.calls.append((json["method"], json["params"], timeout))
        result = self.results[json["method"]]
        if isinstance(result, dict) and "error" in result:
            return _response({"jsonrpc": "2.0", "id": json["id"], "error": result["error"]})
        return _response({"jsonrpc": "2.0", "id": json["id"], "result": result})


class JsonRpcClientTests(unittest.TestCase):
    def test_call_returns_result(self) -> None:
        node = FakeNode({"eth_chainId": "0x1"})
        with mock.patch("rpc_client.jsonrpc.requests.post", node):
            client = JsonRpcClient("http://localhost:8545", timeout=5)
            self.assertEqual(client.call("eth_chainId"), "0x1")
        self.assertEqual(node.calls, [("eth_chainId", [], 5)])

    def test_per_call_timeout_override(self) -> None:
        node = FakeNode({"eth_chainId": "0x1"})
        with mock.patch("rpc_client.jsonrpc.requests.post", node):
            JsonRpcClient("http://localhost:8545", timeout=5).call("eth_chainId", timeout=1.5)
        self.assertEqual(node.calls[0][2], 1.5)

    def test_request_ids_increase(self) -> None:
        seen = []

        def post(url, json=None, timeout=None):
            seen.append(json["id"])
            return _response({"jsonrpc": "2.0", "id": json["id"], "result": None})

        with mock.patch("rpc_client.jsonrpc.requests.post", post):
            client = JsonRpcClient("http://localhost:8545")
            client.call("eth_blockNumber")
            client.call("eth_blockNumber")
        self.assertEqual(seen, [1, 2])

    def test_error_response_raises(self) -> None:
        node = FakeNode({"eth_sendRawTransaction": {"error": {"code": -32000, "message": "txpool is full"}}})
        with mock.patch("rpc_client.jsonrpc.requests.post", node):
            with self.assertRaises(RpcError) as ctx:
                JsonRpcClient("http://localhost:8545").call("eth_sendRawTransaction", "0x00")
        self.assertEqual(ctx.exception.code, -32000)
        self.assertFalse(ctx.exception.permanent)

    def test_transport_errors_propagate(self) -> None:
        with mock.patch(
            "rpc_client.jsonrpc.requests.post",
            side_effect=requests.ConnectionError("refused"),
        ):
            with self.assertRaises(requests.ConnectionError):
                JsonRpcClient("http://localhost:8545").call("eth_chainId")

    def test_invalid_json_is_retryable_rpc_error(self) -> None:
        response = mock.Mock()
        response.raise_for_status.return_value = None
        response.json.side_effect = ValueError("not json")
        response.text = "<html>"
        with mock.patch("rpc_client.jsonrpc.requests.post", return_value=response):
            with self.assertRaises(RpcError) as ctx:
                JsonRpcClient("http://localhost:8545").call("eth_chainId")
        self.assertFalse(ctx.exception.permanent)


class RpcErrorClassificationTests(unittest.TestCase):
    def test_permanent_messages(self) -> None:
        for message in (
            "insufficient funds for gas * price + value",
            "nonce too low",
            "intrinsic gas too low",
            "rlp: expected input list",
        ):
            self.assertTrue(RpcError({"code": -32000, "message": message}).permanent, message)

    def test_permanent_codes(self) -> None:
        self.assertTrue(RpcError({"code": -32602, "message": "invalid argument"}).permanent)

    def test_transient_error(self) -> None:
        error = RpcError({"code": -32000, "message": "replacement transaction underpriced"})
        self.assertFalse(error.permanent)
        self.assertFalse(error.already_known)

    def test_already_known(self) -> None:
        self.assertTrue(RpcError({"code": -32000, "message": "already known"}).already_known)

    def test_explicit_permanence_wins(self) -> None:
        self.assertFalse(RpcError({"code": -32602, "message": "x"}, permanent=False).permanent)


class NodeClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.node = FakeNode(
            {
                "eth_chainId": "0x539",
                "eth_gasPrice": "0x3b9aca00",
                "eth_getTransactionCount": "0x7",
                "eth_sendRawTransaction": "0xabc",
                "eth_getTransactionReceipt": {"status": "0x1", "transactionHash": "0xabc"},
                "eth_getTransactionByHash": {"hash": "0xabc", "blockNumber": None},
            }
        )
        self.patcher = mock.patch("rpc_client.jsonrpc.requests.post", self.node)
        self.patcher.start()
        self.client = NodeClient(JsonRpcClient("http://localhost:8545"))

    def tearDown(self) -> None:
        self.patcher.stop()

    def _methods(self):
        return [call[0] for call in self.node.calls]

    def test_get_nonce_uses_pending_block(self) -> None:
        self.assertEqual(self.client.get_nonce(DOCS_ADDRESS), 7)
        self.assertEqual(self.node.calls[-1][:2], ("eth_getTransactionCount", [DOCS_ADDRESS, "pending"]))

    def test_chain_id_and_gas_price_are_cached(self) -> None:
        self.assertEqual(self.client.chain_id(), 1337)
        self.assertEqual(self.client.chain_id(), 1337)
        self.assertEqual(self.client.gas_price(), 1_000_000_000)
        self.client.gas_price()
        self.assertEqual(self._methods(), ["eth_chainId", "eth_gasPrice"])

    def test_fixed_gas_price_skips_rpc(self) -> None:
        client = NodeClient(JsonRpcClient("http://localhost:8545"), gas_price=5, chain_id=1)
        self.assertEqual(client.gas_price(), 5)
        self.assertEqual(client.chain_id(), 1)
        self.assertEqual(self.node.calls, [])

    def test_sign_value_transfer(self) -> None:
        envelope = TransactionEnvelope(
            sender=DOCS_ADDRESS, to=RECEIVER, value=10, data=b"", gas_limit=21000, nonce=0
        )
        signed = self.client.sign(envelope, DOCS_KEY)
        self.assertTrue(signed.raw)
        self.assertEqual(signed.tx_hash, to_hex(keccak(signed.raw)))

    def test_sign_contract_creation(self) -> None:
        envelope = TransactionEnvelope(
            sender=DOCS_ADDRESS, to=None, value=0, data=b"\x60\x80", gas_limit=429000, nonce=1
        )
        signed = self.client.sign(envelope, DOCS_KEY)
        self.assertEqual(signed.tx_hash, to_hex(keccak(signed.raw)))

    def test_signing_is_deterministic(self) -> None:
        envelope = TransactionEnvelope(
            sender=DOCS_ADDRESS, to=RECEIVER, value=1, data=b"", gas_limit=21000, nonce=3
        )
        self.assertEqual(self.client.sign(envelope, DOCS_KEY), self.client.sign(envelope, DOCS_KEY))

    def test_broadcast_sends_hex(self) -> None:
        self.assertEqual(self.client.broadcast(b"\x01\x02", timeout=3), "0xabc")
        self.assertEqual(self.node.calls[-1], ("eth_sendRawTransaction", ["0x0102"], 3))

    def test_get_receipt(self) -> None:
        self.assertEqual(self.client.get_receipt("0xabc")["status"], "0x1")

    def test_get_transaction(self) -> None:
        self.assertEqual(self.client.get_transaction("0xabc")["hash"], "0xabc")
        self.assertEqual(self.node.calls[-1][:2], ("eth_getTransactionByHash", ["0xabc"]))

    def test_nonce_too_low_marker(self) -> None:
        self.assertTrue(RpcError({"code": -32000, "message": "nonce too low"}).nonce_too_low)
        self.assertFalse(RpcError({"code": -32000, "message": "already known"}).nonce_too_low)


if __name__ == "__main__":
    unittest.main()
