"""
Transaction attributor.

Given a block where a balance change was observed, scans the receipts executed
there for ones affecting the account (as sender, receiver, or mentioned in an
event log), extracts one transfer per valued action or token event, and
resolves the originating transactions and the block they were submitted in.

Outgoing deposits are debited when the receipt is created, which can be a few
blocks before the receiving receipt executes, so when the observed block holds
no transfers the next few blocks are scanned as well.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backend_nearledger.attribution.events import (
    event_mentions_account,
    ft_transfers_from_logs,
    mt_transfers_from_logs,
)
from backend_nearledger.attribution.staking import PatternStakingClassifier, StakingPoolClassifier
from backend_nearledger.core.cancellation import CancellationToken
from backend_nearledger.core.exceptions import BlockUnreadable, RpcError
from backend_nearledger.history.models import TransferDetail, TransferDirection, TransferType
from backend_nearledger.ledger_logging import get_logger
from backend_nearledger.snapshots.models import AssetFilter
from backend_nearledger.sources.base import BlockReceipts, Receipt, ReceiptSource

logger = get_logger(__name__)

DEFAULT_LOOKAHEAD_BLOCKS = 3

# action name -> (value field, memo override); FunctionCall uses its method name as memo
_VALUED_ACTIONS: dict[str, tuple[str, str | None]] = {
    "Transfer": ("deposit", None),
    "FunctionCall": ("deposit", None),
    "Stake": ("stake", "stake"),
}


@dataclass
class Attribution:
    """What caused a balance change at one block."""

    transaction_hashes: list[str] = field(default_factory=list)
    transfers: list[TransferDetail] = field(default_factory=list)
    transaction_block: int | None = None
    block_timestamp: int | None = None
    staking_pools: list[str] = field(default_factory=list)

    def touched_assets(self) -> AssetFilter:
        """Assets the transfers moved: NEAR, token contracts, multi-token ids, pools."""
        fungible = {t.token_id for t in self.transfers if t.type is TransferType.FT and t.token_id}
        intents = {t.token_id for t in self.transfers if t.type is TransferType.MT and t.token_id}
        return AssetFilter.only(
            near=any(t.type is TransferType.NEAR for t in self.transfers),
            fungible_tokens=fungible,
            intents_tokens=intents,
            staking_pools=self.staking_pools,
        )


def _action_transfers(receipt: Receipt, account_id: str) -> list[TransferDetail]:
    if receipt.predecessor_id == account_id:
        direction, counterparty = TransferDirection.OUT, receipt.receiver_id
    elif receipt.receiver_id == account_id:
        direction, counterparty = TransferDirection.IN, receipt.predecessor_id
    else:
        return []
    transfers: list[TransferDetail] = []
    for action in receipt.actions:
        if not isinstance(action, dict):
            continue
        for name, body in action.items():
            spec = _VALUED_ACTIONS.get(name)
            if spec is None or not isinstance(body, dict):
                continue
            value_field, memo = spec
            amount = int(body.get(value_field) or 0)
            if amount <= 0:
                continue
            if name == "FunctionCall":
                memo = body.get("method_name")
            transfers.append(
                TransferDetail(
                    type=TransferType.NEAR,
                    direction=direction,
                    amount=str(amount),
                    counterparty=counterparty,
                    memo=memo,
                    tx_hash=receipt.tx_hash,
                    receipt_id=receipt.receipt_id,
                )
            )
    return transfers


class TransactionAttributor:
    """Resolves receipts, transfers and transaction blocks for an observed change."""

    def __init__(
        self,
        receipts: ReceiptSource,
        token: CancellationToken,
        classifier: StakingPoolClassifier | None = None,
        lookahead_blocks: int = DEFAULT_LOOKAHEAD_BLOCKS,
    ) -> None:
        self._receipts = receipts
        self._token = token
        self._classifier = classifier or PatternStakingClassifier()
        self._lookahead = lookahead_blocks

    def _scan_block(
        self,
        block: BlockReceipts,
        account_id: str,
        transfers: list[TransferDetail],
        hashes: dict[str, str | None],
        seen_receipts: set[str],
    ) -> None:
        for receipt in block.receipts:
            if receipt.receipt_id in seen_receipts:
                continue
            seen_receipts.add(receipt.receipt_id)
            affects = receipt.predecessor_id == account_id or receipt.receiver_id == account_id
            transfers.extend(_action_transfers(receipt, account_id))
            token_transfers = ft_transfers_from_logs(
                receipt.logs, account_id, receipt.receiver_id, receipt.tx_hash, receipt.receipt_id
            ) + mt_transfers_from_logs(
                receipt.logs, account_id, receipt.receiver_id, receipt.tx_hash, receipt.receipt_id
            )
            if token_transfers:
                transfers.extend(token_transfers)
                affects = True
            if not affects:
                affects = event_mentions_account(receipt.logs, account_id)
            if affects and receipt.tx_hash and receipt.tx_hash not in hashes:
                hashes[receipt.tx_hash] = receipt.signer_id

    async def _fetch_block(self, block: int) -> BlockReceipts | None:
        self._token.raise_if_cancelled()
        return await self._receipts.get_block_receipts(block)

    async def _resolve_transaction_block(self, block: int, hashes: dict[str, str | None]) -> int | None:
        if not hashes:
            return None
        heights: list[int] = []
        for tx_hash, signer_id in hashes.items():
            if not signer_id:
                continue
            self._token.raise_if_cancelled()
            try:
                info = await self._receipts.get_transaction(tx_hash, signer_id)
            except (RpcError, BlockUnreadable) as e:
                logger.warning("transaction_lookup_failed", tx_hash=tx_hash, block=block, error=str(e))
                continue
            if info is not None and info.block_height is not None:
                heights.append(info.block_height)
        return min(heights) if heights else block

    async def attribute(self, account_id: str, block: int) -> Attribution:
        """Transactions, transfers, submission block and timestamp behind the change at block."""
        main = await self._fetch_block(block)
        if main is None:
            logger.info("attribution_block_missing", account_id=account_id, block=block)
            return Attribution()

        transfers: list[TransferDetail] = []
        hashes: dict[str, str | None] = {}
        seen_receipts: set[str] = set()
        self._scan_block(main, account_id, transfers, hashes, seen_receipts)

        offset = 1
        while not transfers and offset <= self._lookahead:
            following = await self._fetch_block(block + offset)
            if following is not None:
                self._scan_block(following, account_id, transfers, hashes, seen_receipts)
            offset += 1

        pools: list[str] = []
        for transfer in transfers:
            if self._classifier.classify(transfer, account_id) is not None and transfer.counterparty:
                if transfer.counterparty not in pools:
                    pools.append(transfer.counterparty)

        attribution = Attribution(
            transaction_hashes=list(hashes),
            transfers=transfers,
            transaction_block=await self._resolve_transaction_block(block, hashes),
            block_timestamp=main.timestamp,
            staking_pools=pools,
        )
        logger.debug(
            "block_attributed",
            account_id=account_id,
            block=block,
            transactions=len(attribution.transaction_hashes),
            transfers=len(transfers),
        )
        return attribution

    async def block_timestamp(self, block: int) -> int | None:
        receipts = await self._fetch_block(block)
        return receipts.timestamp if receipts is not None else None
