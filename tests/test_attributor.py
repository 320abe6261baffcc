"""
Tests for transaction attribution: action transfers, NEP-141/NEP-245 event
logs, the lookahead for delayed receipts and staking pool classification.
"""

from __future__ import annotations

import json

import pytest

from backend_nearledger.attribution.attributor import TransactionAttributor
from backend_nearledger.attribution.events import parse_event_log
from backend_nearledger.attribution.staking import (
    PatternStakingClassifier,
    StakingAction,
    discover_pool_ranges,
)
from backend_nearledger.history.models import AccountHistory, TransferDirection, TransferType
from backend_nearledger.sources.base import Receipt

from conftest import ACCOUNT, FakeReceipts, make_entry, near_transfer, snap


def _event(standard: str, event: str, data: list[dict]) -> str:
    return "EVENT_JSON:" + json.dumps({"standard": standard, "version": "1.0.0", "event": event, "data": data})


@pytest.mark.asyncio
async def test_near_transfer_out(receipts, token):
    receipts.add_near_transfer(10, ACCOUNT, "bob.near", "250", "tx1", submitted_at=8)

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 10)

    assert attribution.transaction_hashes == ["tx1"]
    assert attribution.transaction_block == 8
    assert attribution.block_timestamp == 10 * 1_000_000_000
    [transfer] = attribution.transfers
    assert transfer.type is TransferType.NEAR
    assert transfer.direction is TransferDirection.OUT
    assert transfer.amount == "250"
    assert transfer.counterparty == "bob.near"
    assert attribution.touched_assets().near is True


@pytest.mark.asyncio
async def test_ft_transfer_from_event_log(receipts, token):
    receipts.add_receipt(
        20,
        Receipt(
            receipt_id="r1",
            predecessor_id="bob.near",
            receiver_id="usdc.near",
            tx_hash="tx2",
            signer_id="bob.near",
            actions=({"FunctionCall": {"method_name": "ft_transfer", "deposit": "1"}},),
            logs=(
                _event(
                    "nep141",
                    "ft_transfer",
                    [{"old_owner_id": "bob.near", "new_owner_id": ACCOUNT, "amount": "5000000", "memo": "rent"}],
                ),
            ),
        ),
    )

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 20)

    [transfer] = attribution.transfers
    assert transfer.type is TransferType.FT
    assert transfer.direction is TransferDirection.IN
    assert transfer.token_id == "usdc.near"
    assert transfer.amount == "5000000"
    assert transfer.counterparty == "bob.near"
    assert transfer.memo == "rent"
    assert attribution.transaction_hashes == ["tx2"]
    assert attribution.touched_assets().fungible_tokens == ("usdc.near",)


@pytest.mark.asyncio
async def test_mt_transfer_yields_one_record_per_token(receipts, token):
    receipts.add_receipt(
        30,
        Receipt(
            receipt_id="r2",
            predecessor_id="solver.near",
            receiver_id="intents.near",
            tx_hash="tx3",
            signer_id="solver.near",
            logs=(
                _event(
                    "nep245",
                    "mt_transfer",
                    [
                        {
                            "old_owner_id": ACCOUNT,
                            "new_owner_id": "solver.near",
                            "token_ids": ["nep141:eth.omft.near", "nep141:btc.omft.near"],
                            "amounts": ["7", "9"],
                        }
                    ],
                ),
            ),
        ),
    )

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 30)

    assert [(t.type, t.direction, t.token_id, t.amount) for t in attribution.transfers] == [
        (TransferType.MT, TransferDirection.OUT, "nep141:eth.omft.near", "7"),
        (TransferType.MT, TransferDirection.OUT, "nep141:btc.omft.near", "9"),
    ]
    assert attribution.touched_assets().intents_tokens == ("nep141:btc.omft.near", "nep141:eth.omft.near")


@pytest.mark.asyncio
async def test_lookahead_finds_delayed_receipt(receipts, token):
    receipts.add_near_transfer(42, "bob.near", ACCOUNT, "3", "tx4")

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 40)

    assert receipts.fetched == [40, 41, 42]
    assert attribution.transfers[0].direction is TransferDirection.IN
    assert attribution.block_timestamp == 40 * 1_000_000_000


@pytest.mark.asyncio
async def test_empty_block_scans_lookahead_and_gives_up(receipts, token):
    attribution = await TransactionAttributor(receipts, token, lookahead_blocks=2).attribute(ACCOUNT, 50)
    assert receipts.fetched == [50, 51, 52]
    assert attribution.transfers == []
    assert attribution.transaction_block is None


@pytest.mark.asyncio
async def test_event_mention_records_transaction_without_transfer(receipts, token):
    receipts.add_receipt(
        60,
        Receipt(
            receipt_id="r3",
            predecessor_id="dao.near",
            receiver_id="registry.near",
            tx_hash="tx5",
            signer_id="dao.near",
            logs=(_event("nep171", "nft_mint", [{"owner_id": ACCOUNT, "token_ids": ["1"]}]),),
        ),
    )
    receipts.add_near_transfer(61, ACCOUNT, "carol.near", "1", "tx6")

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 60)

    assert attribution.transaction_hashes == ["tx5", "tx6"]
    assert len(attribution.transfers) == 1


@pytest.mark.asyncio
async def test_missing_block_gives_empty_attribution(token):
    class SkippedBlocks(FakeReceipts):
        async def get_block_receipts(self, block):
            return None

    attribution = await TransactionAttributor(SkippedBlocks(), token).attribute(ACCOUNT, 70)
    assert attribution.transfers == []
    assert attribution.transaction_hashes == []


@pytest.mark.asyncio
async def test_staking_deposit_registers_pool(receipts, token):
    receipts.add_near_transfer(80, ACCOUNT, "astro.poolv1.near", "1000", "tx7", method="deposit_and_stake")

    attribution = await TransactionAttributor(receipts, token).attribute(ACCOUNT, 80)

    assert attribution.staking_pools == ["astro.poolv1.near"]
    assert attribution.transfers[0].memo == "deposit_and_stake"
    assert attribution.touched_assets().staking_pools == ("astro.poolv1.near",)


def test_parse_event_log_ignores_plain_and_malformed_logs():
    assert parse_event_log("Transfer 5 from a to b") is None
    assert parse_event_log("EVENT_JSON:{not json") is None
    assert parse_event_log('EVENT_JSON:{"standard": "nep141"}') == {"standard": "nep141"}


def test_classifier_actions():
    classifier = PatternStakingClassifier()
    assert classifier.is_staking_pool("astro.poolv1.near") is True
    assert classifier.is_staking_pool("bob.near") is False
    assert classifier.classify(near_transfer("out", "5", "astro.poolv1.near", "deposit_and_stake")) is StakingAction.DEPOSIT
    assert classifier.classify(near_transfer("out", "1", "astro.poolv1.near", "unstake")) is None
    assert classifier.classify(near_transfer("in", "5", "astro.poolv1.near")) is StakingAction.WITHDRAWAL
    assert classifier.classify(near_transfer("out", "5", "custom-validator.near", "deposit_and_stake")) is StakingAction.DEPOSIT
    assert classifier.classify(near_transfer("out", "5", "bob.near")) is None


def test_discover_pool_ranges():
    pool = "astro.poolv1.near"
    history = AccountHistory(
        account_id=ACCOUNT,
        transactions=[
            make_entry(300, snap(near="2"), snap(near="1"), transfers=[near_transfer("out", "1", pool, "deposit_and_stake")]),
            make_entry(100, snap(near="3"), snap(near="2"), transfers=[near_transfer("out", "1", pool, "deposit_and_stake")]),
            make_entry(500, snap(near="1"), snap(near="3"), transfers=[near_transfer("in", "2", pool)]),
            make_entry(600, snap(near="3"), snap(near="4"), transfers=[near_transfer("in", "1", "other.poolv1.near")]),
        ],
    )
    [found] = discover_pool_ranges(history, PatternStakingClassifier())
    assert found.pool == pool
    assert found.first_deposit_block == 100
    assert found.last_withdrawal_block == 500
