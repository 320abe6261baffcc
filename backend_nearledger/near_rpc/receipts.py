"""
Receipt source backed by neardata block documents.

A neardata block carries, per shard, every receipt execution outcome with the
receipt body (actions, signer), the execution logs (NEP-141 / NEP-245 events)
and the originating transaction hash.
"""

from __future__ import annotations

from typing import Any

from backend_nearledger.core.exceptions import BlockUnreadable
from backend_nearledger.near_rpc.client import NearRpcClient
from backend_nearledger.sources.base import BlockReceipts, Receipt, ReceiptSource, TransactionInfo


def _parse_receipt(execution: dict[str, Any]) -> Receipt | None:
    receipt = execution.get("receipt") or {}
    outcome = (execution.get("execution_outcome") or {}).get("outcome") or {}
    receipt_id = receipt.get("receipt_id") or (execution.get("execution_outcome") or {}).get("id")
    if not receipt_id or not receipt.get("receiver_id"):
        return None
    action = (receipt.get("receipt") or {}).get("Action") or {}
    return Receipt(
        receipt_id=receipt_id,
        predecessor_id=receipt.get("predecessor_id") or "",
        receiver_id=receipt["receiver_id"],
        tx_hash=execution.get("tx_hash"),
        signer_id=action.get("signer_id"),
        actions=tuple(a for a in action.get("actions") or [] if isinstance(a, dict)),
        logs=tuple(str(log) for log in outcome.get("logs") or []),
    )


def parse_neardata_block(document: dict[str, Any]) -> BlockReceipts:
    header = (document.get("block") or {}).get("header") or {}
    receipts = []
    for shard in document.get("shards") or []:
        for execution in shard.get("receipt_execution_outcomes") or []:
            parsed = _parse_receipt(execution)
            if parsed is not None:
                receipts.append(parsed)
    timestamp = header.get("timestamp")
    return BlockReceipts(
        block_height=int(header.get("height") or 0),
        timestamp=int(timestamp) if timestamp is not None else None,
        receipts=tuple(receipts),
    )


class NeardataReceiptSource(ReceiptSource):
    def __init__(self, client: NearRpcClient) -> None:
        self._client = client

    async def get_block_receipts(self, block: int) -> BlockReceipts | None:
        self._client.token.raise_if_cancelled()
        document = await self._client.fetch_neardata_block(block)
        if document is None:
            return None
        parsed = parse_neardata_block(document)
        if parsed.block_height == 0:
            parsed = BlockReceipts(block_height=block, timestamp=parsed.timestamp, receipts=parsed.receipts)
        return parsed

    async def get_transaction(self, tx_hash: str, signer_id: str) -> TransactionInfo | None:
        self._client.token.raise_if_cancelled()
        status = await self._client.tx_status(tx_hash, signer_id)
        transaction = status.get("transaction") or {}
        block_hash = (status.get("transaction_outcome") or {}).get("block_hash")
        height = None
        if block_hash:
            try:
                block = await self._client.get_block(block_hash)
                height = int(block["header"]["height"])
            except BlockUnreadable:
                height = None
        return TransactionInfo(
            hash=transaction.get("hash") or tx_hash,
            signer_id=transaction.get("signer_id") or signer_id,
            receiver_id=transaction.get("receiver_id") or "",
            block_height=height,
        )
