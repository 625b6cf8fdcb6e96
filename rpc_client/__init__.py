from .jsonrpc import JsonRpcClient, RpcError
from .models import RpcClient, SignedPayload
from .node import NodeClient

__all__ = [
    "JsonRpcClient",
    "NodeClient",
    "RpcClient",
    "RpcError",
    "SignedPayload",
]
