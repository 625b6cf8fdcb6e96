"""Transaction templates and ABI payload encoding.

A template describes one kind of transaction (value transfer, contract call
or contract deployment) that is stamped out once per key record. Arguments
may contain placeholders that are resolved per row:

    "$index"             position of the item in the batch
    "$sender"            sender address
    {"$offset": k}       position + k
    {"$cycle": [a, b]}   element ``index % len`` of the list

Encoding delegates to eth_abi; this module only picks the function and
coerces JSON values into the types eth_abi expects.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from eth_abi import encode
from eth_utils import is_hex, to_bytes, to_wei
from eth_utils.abi import collapse_if_tuple, function_abi_to_4byte_selector
from pydantic import BaseModel, model_validator

from .models import RenderedCall

DEFAULT_GAS_LIMITS = {
    "transfer": 21_000,
    "call": 429_496,
    "deploy": 4_290_000,
}


class PayloadError(ValueError):
    """Raised when a template cannot be rendered or encoded."""


class TransactionTemplate(BaseModel):
    kind: Literal["transfer", "call", "deploy"]
    to: Optional[str] = None
    value: Any = 0
    gas_limit: Optional[int] = None
    abi: Optional[Union[List[Dict[str, Any]], str]] = None
    function: Optional[str] = None
    args: List[Any] = []
    bytecode: Optional[str] = None

    @model_validator(mode="after")
    def _check_kind(self) -> "TransactionTemplate":
        if self.kind in ("transfer", "call") and not self.to:
            raise ValueError(f"A {self.kind} template requires 'to'.")
        if self.kind == "call" and (not self.function or self.abi is None):
            raise ValueError("A call template requires 'abi' and 'function'.")
        if self.kind == "deploy" and not self.bytecode:
            raise ValueError("A deploy template requires 'bytecode'.")
        if self.kind == "transfer" and self.args:
            raise ValueError("A transfer template takes no 'args'.")
        if self.gas_limit is None:
            self.gas_limit = DEFAULT_GAS_LIMITS[self.kind]
        return self

    @classmethod
    def load(cls, path: Path) -> "TransactionTemplate":
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PayloadError(f"Cannot read template {path}: {exc}") from exc
        template = cls.model_validate(data)
        return template.resolve_files(path.parent)

    def resolve_files(self, base: Path) -> "TransactionTemplate":
        """Inline ABI and bytecode given as paths relative to ``base``."""
        updates: Dict[str, Any] = {}
        if isinstance(self.abi, str):
            updates["abi"] = _read_json(base / self.abi)
        if self.bytecode and not is_hex(self.bytecode):
            updates["bytecode"] = _read_text(base / self.bytecode).strip()
        return self.model_copy(update=updates) if updates else self

    def render(self, index: int, sender: str) -> RenderedCall:
        value = parse_value(render_placeholders(self.value, index, sender))
        args = render_placeholders(self.args, index, sender)
        abi = self.abi if isinstance(self.abi, list) else None
        if isinstance(self.abi, str):
            raise PayloadError("Template ABI path was not resolved.")

        if self.kind == "transfer":
            payload = b""
            target: Optional[str] = self.to
        elif self.kind == "call":
            payload = encode_call(abi or [], self.function or "", args)
            target = self.to
        else:
            payload = encode_deploy(self.bytecode or "", abi or [], args)
            target = None
        return RenderedCall(
            target=target,
            payload=payload,
            value=value,
            gas_limit=int(self.gas_limit or DEFAULT_GAS_LIMITS[self.kind]),
        )


def render_placeholders(value: Any, index: int, sender: str) -> Any:
    if value == "$index":
        return index
    if value == "$sender":
        return sender
    if isinstance(value, list):
        return [render_placeholders(item, index, sender) for item in value]
    if isinstance(value, dict):
        if set(value) == {"$offset"}:
            return index + int(value["$offset"])
        if set(value) == {"$cycle"}:
            options = value["$cycle"]
            if not isinstance(options, list) or not options:
                raise PayloadError("$cycle requires a non-empty list.")
            return render_placeholders(options[index % len(options)], index, sender)
        return {key: render_placeholders(item, index, sender) for key, item in value.items()}
    return value


def parse_value(value: Any) -> int:
    """Parse a wei amount given as an int, a digit string or '<amount> <unit>'."""
    if isinstance(value, bool):
        raise PayloadError("Value must be a number of wei.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        parts = value.split()
        try:
            if len(parts) == 1:
                return int(parts[0], 0)
            if len(parts) == 2:
                return int(to_wei(Decimal(parts[0]), parts[1].lower()))
        except (ValueError, InvalidOperation) as exc:
            raise PayloadError(f"Invalid value: {value}") from exc
    raise PayloadError(f"Invalid value: {value!r}")


def find_function(abi: Sequence[Dict[str, Any]], name: str, arity: int) -> Dict[str, Any]:
    candidates = [
        entry
        for entry in abi
        if entry.get("type", "function") == "function" and entry.get("name") == name
    ]
    if not candidates:
        raise PayloadError(f"Function '{name}' not found in ABI.")
    for entry in candidates:
        if len(entry.get("inputs", [])) == arity:
            return entry
    raise PayloadError(f"Function '{name}' does not take {arity} arguments.")


def encode_call(abi: Sequence[Dict[str, Any]], function: str, args: Sequence[Any]) -> bytes:
    entry = find_function(abi, function, len(args))
    types = [collapse_if_tuple(item) for item in entry.get("inputs", [])]
    return function_abi_to_4byte_selector(entry) + _encode_arguments(types, args)


def encode_deploy(bytecode: str, abi: Sequence[Dict[str, Any]], args: Sequence[Any]) -> bytes:
    if not is_hex(bytecode):
        raise PayloadError("Bytecode must be hex encoded.")
    code = to_bytes(hexstr=bytecode)
    constructor = next((entry for entry in abi if entry.get("type") == "constructor"), None)
    inputs = constructor.get("inputs", []) if constructor else []
    if len(inputs) != len(args):
        raise PayloadError(f"Constructor takes {len(inputs)} arguments, got {len(args)}.")
    if not inputs:
        return code
    types = [collapse_if_tuple(item) for item in inputs]
    return code + _encode_arguments(types, args)


def _encode_arguments(types: List[str], args: Sequence[Any]) -> bytes:
    values = [_coerce(abi_type, arg) for abi_type, arg in zip(types, args)]
    try:
        return encode(types, values)
    except Exception as exc:  # eth_abi raises several unrelated error types
        raise PayloadError(f"Cannot encode arguments {types}: {exc}") from exc


def _coerce(abi_type: str, value: Any) -> Any:
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        if not isinstance(value, list):
            raise PayloadError(f"Expected a list for {abi_type}.")
        return [_coerce(inner, item) for item in value]
    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise PayloadError(f"Invalid integer for {abi_type}: {value}") from exc
    if abi_type.startswith("bytes") and isinstance(value, str):
        return to_bytes(hexstr=value)
    return value


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Cannot read ABI {path}: {exc}") from exc


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PayloadError(f"Cannot read bytecode {path}: {exc}") from exc
