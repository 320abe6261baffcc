"""
NEP-297 event log parsing (EVENT_JSON: prefix).

Extracts fungible-token (NEP-141) and multi-token (NEP-245) movements that
involve a given account from a receipt's logs.
"""

from __future__ import annotations

import json
from typing import Any, Iterable

from backend_nearledger.history.models import TransferDetail, TransferDirection, TransferType

EVENT_JSON_PREFIX = "EVENT_JSON:"


def parse_event_log(log: str) -> dict[str, Any] | None:
    """Return the decoded event, or None for plain logs and malformed JSON."""
    if not log.startswith(EVENT_JSON_PREFIX):
        return None
    try:
        event = json.loads(log[len(EVENT_JSON_PREFIX):])
    except json.JSONDecodeError:
        return None
    return event if isinstance(event, dict) else None


def _events(logs: Iterable[str], standard: str) -> Iterable[tuple[str, list[dict[str, Any]]]]:
    for log in logs:
        event = parse_event_log(log)
        if event is None or event.get("standard") != standard:
            continue
        data = event.get("data") or []
        yield str(event.get("event")), [d for d in data if isinstance(d, dict)]


def event_mentions_account(logs: Iterable[str], account_id: str) -> bool:
    """True when any structured event payload mentions account_id."""
    for log in logs:
        event = parse_event_log(log)
        if event is not None and account_id in json.dumps(event):
            return True
    return False


def ft_transfers_from_logs(
    logs: Iterable[str],
    account_id: str,
    contract_id: str,
    tx_hash: str | None,
    receipt_id: str | None,
) -> list[TransferDetail]:
    """NEP-141 ft_transfer / ft_mint / ft_burn movements of account_id on contract_id."""
    transfers: list[TransferDetail] = []

    def add(direction: TransferDirection, amount: Any, counterparty: str | None, memo: Any) -> None:
        transfers.append(
            TransferDetail(
                type=TransferType.FT,
                direction=direction,
                amount=str(amount or "0"),
                counterparty=counterparty,
                token_id=contract_id,
                memo=memo,
                tx_hash=tx_hash,
                receipt_id=receipt_id,
            )
        )

    for name, items in _events(logs, "nep141"):
        for item in items:
            if name == "ft_transfer":
                if item.get("old_owner_id") == account_id:
                    add(TransferDirection.OUT, item.get("amount"), item.get("new_owner_id"), item.get("memo"))
                elif item.get("new_owner_id") == account_id:
                    add(TransferDirection.IN, item.get("amount"), item.get("old_owner_id"), item.get("memo"))
            elif name == "ft_mint" and item.get("owner_id") == account_id:
                add(TransferDirection.IN, item.get("amount"), contract_id, item.get("memo"))
            elif name == "ft_burn" and item.get("owner_id") == account_id:
                add(TransferDirection.OUT, item.get("amount"), contract_id, item.get("memo"))
    return transfers


def mt_transfers_from_logs(
    logs: Iterable[str],
    account_id: str,
    contract_id: str,
    tx_hash: str | None,
    receipt_id: str | None,
) -> list[TransferDetail]:
    """NEP-245 mt_transfer / mt_mint / mt_burn movements, one record per token id."""
    transfers: list[TransferDetail] = []

    def add_all(direction: TransferDirection, item: dict[str, Any], counterparty: str | None) -> None:
        token_ids = item.get("token_ids") or []
        amounts = item.get("amounts") or []
        for i, token_id in enumerate(token_ids):
            transfers.append(
                TransferDetail(
                    type=TransferType.MT,
                    direction=direction,
                    amount=str(amounts[i]) if i < len(amounts) else "0",
                    counterparty=counterparty,
                    token_id=token_id,
                    memo=item.get("memo"),
                    tx_hash=tx_hash,
                    receipt_id=receipt_id,
                )
            )

    for name, items in _events(logs, "nep245"):
        for item in items:
            if name == "mt_transfer":
                if item.get("old_owner_id") == account_id:
                    add_all(TransferDirection.OUT, item, item.get("new_owner_id"))
                elif item.get("new_owner_id") == account_id:
                    add_all(TransferDirection.IN, item, item.get("old_owner_id"))
            elif name == "mt_mint" and item.get("owner_id") == account_id:
                add_all(TransferDirection.IN, item, contract_id)
            elif name == "mt_burn" and item.get("owner_id") == account_id:
                add_all(TransferDirection.OUT, item, contract_id)
    return transfers
