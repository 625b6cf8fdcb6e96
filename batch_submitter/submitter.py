"""Bounded-concurrency batch signing and broadcast with per-item retries."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

import requests

from rpc_client.jsonrpc import RpcError
from rpc_client.models import RpcClient
from tx_builder.builder import InvalidEnvelope, validate_envelope

from .config import BatchConfig
from .models import (
    BatchItem,
    BatchReport,
    ItemState,
    SubmissionResult,
    SubmissionStatus,
    rejected_fraction,
)

logger = logging.getLogger(__name__)

StateObserver = Callable[[int, ItemState], None]


class BatchAbortedError(RuntimeError):
    """Raised when shared setup fails and no item can be submitted."""


class _AttemptFailed(Exception):
    def __init__(self, reason: str, permanent: bool) -> None:
        self.reason = reason
        self.permanent = permanent
        super().__init__(reason)


class BatchSubmitter:
    """Drives batch items through signing and broadcast.

    Items are dispatched in input order into a pool of ``config.concurrency``
    workers. Items that share a sender are chained: an item does not start
    signing until the previous item for that sender has handed its first
    broadcast to the node (or finished), so the node always sees a sender's
    nonces in ascending order. Different senders run in parallel.

    Per-item failures are recorded in that item's result and never raised.
    """

    def __init__(
        self,
        client: RpcClient,
        config: Optional[BatchConfig] = None,
        observer: Optional[StateObserver] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._config = config or BatchConfig()
        self._observer = observer
        self._sleep = sleep
        self._clock = clock
        self._cancel = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop dispatching new items; in-flight items run to completion."""
        self._cancel.set()

    def submit_batch(self, items: Sequence[BatchItem]) -> BatchReport:
        items = list(items)
        if not items:
            return BatchReport(results=())

        self._check_node()

        results: List[SubmissionResult] = [SubmissionResult(envelope=item.envelope) for item in items]
        gates = [threading.Event() for _ in items]
        predecessors = _chain_by_sender(items)
        concurrency = self._config.concurrency
        slots = threading.BoundedSemaphore(concurrency)

        logger.info(f"Submitting batch of {len(items)} items with concurrency {concurrency}")
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="submit") as pool:
            futures = []
            for index, item in enumerate(items):
                self._notify(index, ItemState.QUEUED)
                if not self._acquire_slot(slots):
                    break
                futures.append(
                    pool.submit(
                        self._run_item, index, item, results, gates, predecessors[index], slots
                    )
                )
            for future in futures:
                future.result()

        cancelled = self._cancel.is_set()
        if cancelled:
            for index, result in enumerate(results):
                if result.status == SubmissionStatus.PENDING:
                    results[index] = replace(
                        result,
                        status=SubmissionStatus.CANCELLED,
                        reason="Batch cancelled before dispatch.",
                    )
                    self._notify(index, ItemState.CANCELLED)

        report = BatchReport(
            results=tuple(results),
            threshold_exceeded=self._threshold_exceeded(results),
            cancelled=cancelled,
        )
        logger.info(f"Batch finished: {report.counts}")
        return report

    def _check_node(self) -> None:
        try:
            self._client.chain_id()
        except (RpcError, requests.RequestException, TimeoutError) as exc:
            raise BatchAbortedError(f"Cannot reach RPC endpoint: {exc}") from exc

    def _acquire_slot(self, slots: threading.BoundedSemaphore) -> bool:
        while not self._cancel.is_set():
            if slots.acquire(timeout=0.05):
                if self._cancel.is_set():
                    slots.release()
                    return False
                return True
        return False

    def _run_item(
        self,
        index: int,
        item: BatchItem,
        results: List[SubmissionResult],
        gates: List[threading.Event],
        predecessor: Optional[int],
        slots: threading.BoundedSemaphore,
    ) -> None:
        try:
            if predecessor is not None:
                gates[predecessor].wait()
            if self._cancel.is_set():
                results[index] = replace(
                    results[index],
                    status=SubmissionStatus.CANCELLED,
                    reason="Batch cancelled before dispatch.",
                )
                self._notify(index, ItemState.CANCELLED)
                return
            results[index] = self._process(index, item, gates[index])
        except Exception as exc:
            logger.exception(f"Item {index} failed unexpectedly")
            results[index] = replace(
                results[index],
                status=SubmissionStatus.REJECTED,
                reason=f"Unexpected error: {exc}",
            )
            self._notify(index, ItemState.REJECTED)
        finally:
            gates[index].set()
            slots.release()

    def _process(self, index: int, item: BatchItem, gate: threading.Event) -> SubmissionResult:
        envelope = item.envelope
        try:
            validate_envelope(envelope)
            if item.key_pair.address.lower() != envelope.sender.lower():
                raise InvalidEnvelope("Envelope sender does not match the signing key.")
        except InvalidEnvelope as exc:
            logger.info(f"Item {index} rejected before signing: {exc}")
            self._notify(index, ItemState.REJECTED)
            return SubmissionResult(
                envelope=envelope, status=SubmissionStatus.REJECTED, reason=str(exc)
            )

        max_attempts = self._config.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                tx_hash = self._attempt(index, item, gate, attempt)
            except _AttemptFailed as failure:
                if failure.permanent or attempt == max_attempts:
                    logger.info(
                        f"Item {index} ({envelope.sender} nonce {envelope.nonce}) rejected "
                        f"after {attempt} attempt(s): {failure.reason}"
                    )
                    self._notify(index, ItemState.REJECTED)
                    return SubmissionResult(
                        envelope=envelope,
                        status=SubmissionStatus.REJECTED,
                        reason=failure.reason,
                        attempts=attempt,
                    )
                delay = self._config.backoff(attempt)
                logger.warning(
                    f"Item {index} attempt {attempt}/{max_attempts} failed: {failure.reason}; "
                    f"retrying in {delay:.2f}s"
                )
                self._notify(index, ItemState.RETRYING)
                self._sleep(delay)
                continue

            logger.info(f"Item {index} ({envelope.sender} nonce {envelope.nonce}) confirmed: {tx_hash}")
            self._notify(index, ItemState.CONFIRMED)
            return SubmissionResult(
                envelope=envelope,
                status=SubmissionStatus.CONFIRMED,
                tx_hash=tx_hash,
                attempts=attempt,
            )

        raise AssertionError("unreachable")

    def _attempt(self, index: int, item: BatchItem, gate: threading.Event, attempt: int) -> str:
        self._notify(index, ItemState.SIGNING)
        try:
            signed = self._client.sign(item.envelope, item.key_pair.private_key)
        except RpcError as exc:
            raise _AttemptFailed(f"Signing failed: {exc}", exc.permanent) from exc
        except (requests.RequestException, TimeoutError) as exc:
            raise _AttemptFailed(f"Signing failed: {exc}", False) from exc
        except (ValueError, TypeError) as exc:
            raise _AttemptFailed(f"Signing failed: {exc}", True) from exc

        self._notify(index, ItemState.BROADCASTING)
        try:
            tx_hash = self._client.broadcast(signed.raw, timeout=self._config.broadcast_timeout)
        except RpcError as exc:
            if exc.already_known:
                tx_hash = signed.tx_hash
            elif attempt > 1 and exc.nonce_too_low and self._landed(signed.tx_hash):
                logger.info(f"Item {index} was accepted by an earlier attempt: {signed.tx_hash}")
                tx_hash = signed.tx_hash
            else:
                raise _AttemptFailed(str(exc), exc.permanent) from exc
        except (requests.RequestException, TimeoutError) as exc:
            raise _AttemptFailed(f"Broadcast failed: {exc}", False) from exc
        finally:
            gate.set()

        if self._config.wait_for_receipt:
            self._await_receipt(tx_hash)
        return tx_hash

    def _landed(self, tx_hash: str) -> bool:
        """Whether the node already knows ``tx_hash``, pending or mined."""
        try:
            return self._client.get_transaction(tx_hash) is not None
        except (RpcError, requests.RequestException, TimeoutError) as exc:
            logger.warning(f"Lookup of {tx_hash} failed: {exc}")
            return False

    def _await_receipt(self, tx_hash: str) -> None:
        deadline = self._clock() + self._config.receipt_timeout
        while True:
            try:
                receipt = self._client.get_receipt(tx_hash)
            except RpcError as exc:
                if exc.permanent:
                    raise _AttemptFailed(f"Receipt lookup failed: {exc}", True) from exc
                logger.warning(f"Receipt lookup for {tx_hash} failed: {exc}")
                receipt = None
            except (requests.RequestException, TimeoutError) as exc:
                logger.warning(f"Receipt lookup for {tx_hash} failed: {exc}")
                receipt = None

            if receipt is not None:
                if _receipt_failed(receipt):
                    raise _AttemptFailed(f"Transaction {tx_hash} reverted", True)
                return
            if self._clock() >= deadline:
                raise _AttemptFailed(f"Timed out waiting for receipt of {tx_hash}", False)
            self._sleep(self._config.receipt_poll_interval)

    def _threshold_exceeded(self, results: Sequence[SubmissionResult]) -> bool:
        fraction = rejected_fraction(results)
        if fraction > self._config.reject_on_threshold:
            logger.warning(
                f"{fraction:.0%} of the batch was rejected "
                f"(threshold {self._config.reject_on_threshold:.0%})"
            )
            return True
        return False

    def _notify(self, index: int, state: ItemState) -> None:
        logger.debug(f"Item {index} -> {state.value}")
        if self._observer is not None:
            self._observer(index, state)


def _chain_by_sender(items: Sequence[BatchItem]) -> List[Optional[int]]:
    """For each item, the index of the previous item with the same sender."""
    last_seen: Dict[str, int] = {}
    predecessors: List[Optional[int]] = []
    for index, item in enumerate(items):
        sender = item.envelope.sender.lower()
        predecessors.append(last_seen.get(sender))
        last_seen[sender] = index
    return predecessors


def _receipt_failed(receipt: dict) -> bool:
    status = receipt.get("status")
    if status is None:
        return False
    if isinstance(status, str):
        return int(status, 16) == 0
    return int(status) == 0
