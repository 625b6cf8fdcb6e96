"""Operator CLI for batch key generation and transaction submission."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from batch_submitter.config import BatchConfig
from batch_submitter.models import BatchReport
from batch_submitter.pipeline import BatchRun
from batch_submitter.submitter import BatchAbortedError
from key_material.generator import EntropyError, KeyMaterialGenerator
from key_material.genesis import DEFAULT_BALANCE_WEI, build_allocation, merge_into_chainspec
from key_material.keystore import CsvKeyStore, PersistenceError
from key_material.models import records_from_key_pairs
from tx_builder.payload import TransactionTemplate

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2
EXIT_CANCELLED = 3

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="batchtx")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "WARNING"),
        help="Logging level (default: $LOG_LEVEL or WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    keys_parser = subparsers.add_parser("keys")
    keys_sub = keys_parser.add_subparsers(dest="keys_command", required=True)

    keys_generate = keys_sub.add_parser("generate")
    keys_generate.add_argument("--count", required=True, type=int)
    keys_generate.add_argument("--output", required=True)
    keys_generate.set_defaults(func=_keys_generate)

    keys_show = keys_sub.add_parser("show")
    keys_show.add_argument("--keys", required=True)
    keys_show.set_defaults(func=_keys_show)

    keys_genesis = keys_sub.add_parser("genesis")
    keys_genesis.add_argument("--keys", required=True)
    keys_genesis.add_argument("--balance", type=int, default=DEFAULT_BALANCE_WEI)
    keys_genesis.add_argument("--output", required=True)
    keys_genesis.add_argument("--chainspec")
    keys_genesis.add_argument("--section", default="accounts")
    keys_genesis.set_defaults(func=_keys_genesis)

    batch_parser = subparsers.add_parser("batch")
    batch_sub = batch_parser.add_subparsers(dest="batch_command", required=True)

    batch_submit = batch_sub.add_parser("submit")
    batch_submit.add_argument("--keys", required=True)
    batch_submit.add_argument("--template", required=True)
    batch_submit.add_argument("--config")
    batch_submit.add_argument("--rpc")
    batch_submit.add_argument("--concurrency", type=int)
    batch_submit.add_argument("--max-attempts", type=int)
    batch_submit.add_argument("--gas-price", type=int)
    batch_submit.add_argument("--limit", type=int)
    batch_submit.add_argument("--repeat", type=int, default=1)
    batch_submit.add_argument("--wait-receipt", action="store_true", default=None)
    batch_submit.set_defaults(func=_batch_submit)

    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    try:
        return args.func(args)
    except (
        ValueError,
        EntropyError,
        PersistenceError,
        BatchAbortedError,
    ) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR


def _configure_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise SystemExit(f"ERROR: unknown log level {level!r}")
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger().setLevel(numeric)


def _keys_generate(args: argparse.Namespace) -> int:
    generator = KeyMaterialGenerator()
    records = records_from_key_pairs(generator.generate(args.count))
    CsvKeyStore().write(records, Path(args.output))
    for record in records:
        print(f"{record.index} {record.address}")
    print(f"Wrote {len(records)} keys to {args.output}")
    return EXIT_OK


def _keys_show(args: argparse.Namespace) -> int:
    scan = CsvKeyStore().scan(Path(args.keys))
    for record in scan.records:
        print(f"{record.index} {record.address}")
    for error in scan.errors:
        print(f"WARNING: {error}", file=sys.stderr)
    return EXIT_REJECTED if scan.errors else EXIT_OK


def _keys_genesis(args: argparse.Namespace) -> int:
    records = CsvKeyStore().read(Path(args.keys))
    allocation = build_allocation(records, args.balance)
    if args.chainspec:
        document = merge_into_chainspec(_load_json(args.chainspec), allocation, args.section)
    else:
        document = allocation
    _write_json(args.output, document)
    print(f"Allocated {len(allocation)} accounts in {args.output}")
    return EXIT_OK


def _batch_submit(args: argparse.Namespace) -> int:
    overrides = {
        "rpc_endpoint": args.rpc,
        "concurrency": args.concurrency,
        "max_attempts": args.max_attempts,
        "gas_price": args.gas_price,
        "wait_for_receipt": args.wait_receipt,
    }
    if args.config:
        config = BatchConfig.from_file(Path(args.config), **overrides)
    else:
        config = BatchConfig().with_overrides(**overrides)

    template = TransactionTemplate.load(Path(args.template))
    run = BatchRun(config)
    items = run.prepare(Path(args.keys), template, limit=args.limit, repeat=args.repeat)

    def _interrupt(signum, frame) -> None:
        logger.warning("Interrupted; cancelling remaining items")
        run.cancel()

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        report = run.submit(items)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(json.dumps(report.to_dict(), indent=2))
    return _exit_code(report)


def _exit_code(report: BatchReport) -> int:
    if report.cancelled:
        return EXIT_CANCELLED
    if report.any_rejected:
        return EXIT_REJECTED
    return EXIT_OK


def _load_json(source: str) -> dict:
    try:
        data = json.loads(Path(source).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Cannot read {source}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{source} must contain a JSON object.")
    return data


def _write_json(destination: str, document: dict) -> None:
    text = json.dumps(document, indent=2)
    if destination == "-":
        print(text)
        return
    try:
        Path(destination).write_text(text + "\n", encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"Cannot write {destination}: {exc}") from exc


if __name__ == "__main__":
    raise SystemExit(main())
