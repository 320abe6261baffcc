"""
Tests for read-only verification of stored histories.
"""

from __future__ import annotations

import pytest

from backend_nearledger.core.exceptions import HistoryLoadError
from backend_nearledger.gaps.audit import verify_history, verify_history_file
from backend_nearledger.history.models import AccountHistory
from backend_nearledger.history.store import HistoryStore

from conftest import ACCOUNT, make_entry, snap


def _history(second_before: str = "900") -> AccountHistory:
    return AccountHistory(
        account_id=ACCOUNT,
        transactions=[
            make_entry(100, snap(near="0"), snap(near="1000")),
            make_entry(200, snap(near="1000"), snap(near="900")),
            make_entry(300, snap(near=second_before), snap(near="800")),
        ],
    )


def test_connected_history_is_valid():
    report = verify_history(_history())
    assert report.valid is True
    assert report.total_transactions == 3
    assert report.verified_count == 3
    assert report.error_count == 0


def test_broken_pair_is_reported():
    report = verify_history(_history(second_before="850"))

    assert report.valid is False
    assert report.verified_count == 2
    assert report.error_count == 1
    [error] = report.errors
    assert (error.previous_block, error.current_block) == (200, 300)
    doc = report.to_dict()
    assert doc["errors"][0]["errors"][0] == {
        "type": "near_balance_mismatch",
        "expected": "900",
        "actual": "850",
        "message": "NEAR balance mismatch: expected 900, got 850",
    }


def test_empty_history_is_valid():
    report = verify_history(AccountHistory(account_id=ACCOUNT))
    assert report.valid is True
    assert report.verified_count == 0


def test_verify_stored_file(tmp_path):
    store = HistoryStore(tmp_path)
    path = store.save(_history(second_before="850"))
    assert verify_history_file(path).error_count == 1

    with pytest.raises(HistoryLoadError):
        verify_history_file(tmp_path / "nobody.near.json")
