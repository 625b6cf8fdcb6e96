"""Local-first FastAPI shell for key generation and batch submission."""

from __future__ import annotations

import html
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field

from batch_submitter.config import BatchConfig
from batch_submitter.models import BatchReport
from batch_submitter.pipeline import BatchRun
from batch_submitter.submitter import BatchAbortedError
from key_material.generator import EntropyError, KeyMaterialGenerator
from key_material.keystore import CsvKeyStore, PersistenceError
from key_material.models import records_from_key_pairs
from tx_builder.payload import TransactionTemplate

app = FastAPI(title="batchtx", description="Local-first batch transaction shell")

LOCAL_HOSTS = {"127.0.0.1", "::1", "localhost", "testclient"}

_CONTEXT: Dict[str, Optional[str]] = {"keys_path": None}
_CONFIG: Dict[str, BatchConfig] = {"current": BatchConfig()}
_RUN_LOCK = threading.Lock()
_ACTIVE_RUN: Optional[BatchRun] = None
_LAST_REPORT: Optional[BatchReport] = None


class GenerateKeysRequest(BaseModel):
    count: int = Field(ge=0)
    output: str


class ContextRequest(BaseModel):
    keys_path: str


class BatchRequest(BaseModel):
    template: Dict[str, Any]
    keys_path: Optional[str] = None
    rpc_endpoint: Optional[str] = None
    concurrency: Optional[int] = None
    max_attempts: Optional[int] = None
    gas_price: Optional[int] = None
    wait_for_receipt: Optional[bool] = None
    limit: Optional[int] = None
    repeat: int = 1


def _is_local_host(host: str) -> bool:
    return host in LOCAL_HOSTS


@app.middleware("http")
async def _local_only(request: Request, call_next):
    client = request.client
    if client is not None and not _is_local_host(client.host):
        return JSONResponse({"error": "Remote access disabled."}, status_code=403)
    return await call_next(request)


async def _handle_errors(request: Request, exc: Exception):
    return JSONResponse({"error": str(exc)}, status_code=400)


for _exc_class in (
    BatchAbortedError,
    EntropyError,
    PersistenceError,
    ValueError,
):
    app.add_exception_handler(_exc_class, _handle_errors)


@app.get("/", response_class=HTMLResponse)
async def dashboard() -> HTMLResponse:
    return HTMLResponse(_render_dashboard())


@app.get("/api/status")
async def status():
    keys_path = _CONTEXT["keys_path"]
    key_count = None
    if keys_path and Path(keys_path).exists():
        key_count = len(CsvKeyStore().scan(Path(keys_path)).records)
    return {
        "keys_path": keys_path,
        "key_count": key_count,
        "rpc_endpoint": _CONFIG["current"].rpc_endpoint,
        "batch_running": _ACTIVE_RUN is not None,
        "last_batch": _LAST_REPORT.counts if _LAST_REPORT else None,
    }


@app.post("/api/context")
async def set_context(payload: ContextRequest):
    if not Path(payload.keys_path).exists():
        raise HTTPException(status_code=404, detail="Key file not found.")
    _CONTEXT["keys_path"] = payload.keys_path
    return {"status": "ok"}


@app.post("/api/keys/generate")
def generate_keys(payload: GenerateKeysRequest):
    records = records_from_key_pairs(KeyMaterialGenerator().generate(payload.count))
    CsvKeyStore().write(records, Path(payload.output))
    _CONTEXT["keys_path"] = payload.output
    return {
        "keys_path": payload.output,
        "addresses": [record.address for record in records],
    }


@app.get("/api/keys")
async def list_keys():
    keys_path = _require_keys_path()
    scan = CsvKeyStore().scan(Path(keys_path))
    return {
        "keys_path": keys_path,
        "records": [{"index": record.index, "address": record.address} for record in scan.records],
        "errors": [{"row": error.row_number, "reason": error.reason} for error in scan.errors],
    }


@app.post("/api/batch")
def submit_batch(payload: BatchRequest):
    global _ACTIVE_RUN, _LAST_REPORT
    keys_path = payload.keys_path or _require_keys_path()
    template = TransactionTemplate.model_validate(payload.template).resolve_files(Path(keys_path).parent)
    config = _CONFIG["current"].with_overrides(
        rpc_endpoint=payload.rpc_endpoint,
        concurrency=payload.concurrency,
        max_attempts=payload.max_attempts,
        gas_price=payload.gas_price,
        wait_for_receipt=payload.wait_for_receipt,
    )

    if not _RUN_LOCK.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A batch is already running.")
    try:
        run = BatchRun(config)
        _ACTIVE_RUN = run
        items = run.prepare(Path(keys_path), template, limit=payload.limit, repeat=payload.repeat)
        report = run.submit(items)
    finally:
        _ACTIVE_RUN = None
        _RUN_LOCK.release()

    _LAST_REPORT = report
    return report.to_dict()


@app.post("/api/batch/cancel")
async def cancel_batch():
    run = _ACTIVE_RUN
    if run is None:
        return {"cancelled": False}
    run.cancel()
    return {"cancelled": True}


@app.get("/api/batch/last")
async def last_batch():
    if _LAST_REPORT is None:
        raise HTTPException(status_code=404, detail="No batch has been submitted.")
    return _LAST_REPORT.to_dict()


def _require_keys_path() -> str:
    keys_path = _CONTEXT["keys_path"]
    if not keys_path:
        raise HTTPException(status_code=400, detail="No key file selected.")
    return keys_path


def _render_dashboard() -> str:
    keys_path = html.escape(_CONTEXT["keys_path"] or "none")
    endpoint = html.escape(_CONFIG["current"].rpc_endpoint)
    last = _LAST_REPORT.counts if _LAST_REPORT else {}
    rows = "".join(
        f"<tr><td>{html.escape(name)}</td><td>{count}</td></tr>" for name, count in last.items()
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8" />
  <title>batchtx</title>
  <style>
    body {{ font-family: "Segoe UI", "Helvetica Neue", Arial, sans-serif; margin: 2rem; }}
    table {{ border-collapse: collapse; }}
    td {{ border: 1px solid #d3d8e0; padding: 0.25rem 0.75rem; }}
  </style>
</head>
<body>
  <h1>batchtx</h1>
  <p>Key file: <code>{keys_path}</code></p>
  <p>RPC endpoint: <code>{endpoint}</code></p>
  <h2>Last batch</h2>
  <table>{rows or "<tr><td>No batch yet</td></tr>"}</table>
</body>
</html>
"""


def _reset_state() -> None:
    global _ACTIVE_RUN, _LAST_REPORT
    _CONTEXT["keys_path"] = None
    _CONFIG["current"] = BatchConfig()
    _ACTIVE_RUN = None
    _LAST_REPORT = None
