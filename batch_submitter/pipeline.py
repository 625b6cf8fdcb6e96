"""Key file + template -> envelopes -> submitted batch."""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import requests

from key_material.keystore import CsvKeyStore, KeyStore
from key_material.models import KeyRecord
from rpc_client.jsonrpc import RpcError
from rpc_client.models import RpcClient
from rpc_client.node import NodeClient
from tx_builder.builder import TransactionBuilder
from tx_builder.payload import TransactionTemplate

from .config import BatchConfig
from .models import BatchItem, BatchReport
from .submitter import BatchAbortedError, BatchSubmitter, StateObserver

logger = logging.getLogger(__name__)


def prepare_batch(
    records: Sequence[KeyRecord],
    template: TransactionTemplate,
    builder: TransactionBuilder,
    limit: Optional[int] = None,
    repeat: int = 1,
) -> Tuple[BatchItem, ...]:
    """Build one envelope per key record (``repeat`` per record), in row order.

    Placeholders see the position of the item in the batch as ``$index``.
    """
    if limit is not None and limit < 0:
        raise ValueError("Limit must be non-negative.")
    if repeat < 1:
        raise ValueError("Repeat must be at least 1.")

    selected = list(records if limit is None else records[:limit])
    items: List[BatchItem] = []
    for record in selected:
        key_pair = record.to_key_pair()
        for _ in range(repeat):
            call = template.render(len(items), key_pair.address)
            envelope = builder.build_rendered(key_pair, call)
            items.append(BatchItem(key_pair=key_pair, envelope=envelope))
    return tuple(items)


class BatchRun:
    """One submission run: its own client, builder and cancellable submitter."""

    def __init__(
        self,
        config: BatchConfig,
        client: Optional[RpcClient] = None,
        keystore: Optional[KeyStore] = None,
        observer: Optional[StateObserver] = None,
    ) -> None:
        self.config = config
        self.client = client or NodeClient.from_url(
            config.rpc_endpoint,
            timeout=config.broadcast_timeout,
            gas_price=config.gas_price,
        )
        self.keystore = keystore or CsvKeyStore()
        self.builder = TransactionBuilder(self.client.get_nonce)
        self.submitter = BatchSubmitter(self.client, config, observer=observer)

    def prepare(
        self,
        keys_path: Path,
        template: TransactionTemplate,
        limit: Optional[int] = None,
        repeat: int = 1,
    ) -> Tuple[BatchItem, ...]:
        records = self.keystore.read(Path(keys_path))
        try:
            items = prepare_batch(records, template, self.builder, limit=limit, repeat=repeat)
        except (RpcError, requests.RequestException) as exc:
            raise BatchAbortedError(f"Cannot fetch account nonces: {exc}") from exc
        logger.info(f"Prepared {len(items)} envelopes from {keys_path}")
        return items

    def submit(self, items: Sequence[BatchItem]) -> BatchReport:
        return self.submitter.submit_batch(items)

    def cancel(self) -> None:
        self.submitter.cancel()
