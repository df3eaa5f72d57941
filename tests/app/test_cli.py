from __future__ import annotations

import logging
from collections import Counter
from typing import TYPE_CHECKING, Any

import pytest

from skinsync.domain.ledger import ItemLedger
from skinsync.domain.model import Market
from skinsync.domain.reconciliation import TransitionContext
from skinsync.domain.service import SyncRoundResult
from skinsync.ui import cli
from tests.helpers.items import EventFeed, make_identity

if TYPE_CHECKING:
    from skinsync.app import SkinSyncApp


def _row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "item_key": "item:310776:302028390:412/0.2512",
        "state": "listed",
        "market": "bitskins",
        "listing_price": "10.50",
        "flagged": False,
    }
    row.update(overrides)
    return row


def test_show_prints_snapshots(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    captured: dict[str, Any] = {}

    def fake_list(**kwargs: Any) -> list[dict[str, object]]:
        captured.update(kwargs)
        return [_row(), _row(item_key="asset:1004", state="sold", flagged=True)]

    monkeypatch.setattr(cli, "list_snapshots", fake_list)

    cli.main(["show"])

    assert captured == {"state": None, "flagged": None}
    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("item:310776:302028390:412/0.2512")
    assert "10.50" in lines[0]
    assert not lines[0].endswith("!")
    assert lines[1].endswith(" !")


def test_show_filters_by_state_and_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_list(**kwargs: Any) -> list[dict[str, object]]:
        captured.update(kwargs)
        return []

    monkeypatch.setattr(cli, "list_snapshots", fake_list)

    cli.main(["show", "--state", " Pending_Trade_Confirmation ", "--flagged"])

    assert captured == {"state": "pending_trade_confirmation", "flagged": True}


def test_show_rejects_unknown_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "list_snapshots", lambda **_: [])

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["show", "--state", "on-fire"])

    assert excinfo.value.code == 2


def test_command_is_required() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])

    assert excinfo.value.code == 2


def _fake_sync(
    monkeypatch: pytest.MonkeyPatch, result: SyncRoundResult | None
) -> dict[str, Any]:
    calls: dict[str, Any] = {}
    app = object()

    def fake_build() -> object:
        return app

    async def fake_run(built: SkinSyncApp, *, once: bool = False) -> SyncRoundResult | None:
        calls["app"] = built
        calls["once"] = once
        return result

    monkeypatch.setattr(cli, "build_app", fake_build)
    monkeypatch.setattr(cli, "run_sync", fake_run)
    calls["expected_app"] = app
    return calls


def test_sync_once_runs_a_single_round(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _fake_sync(monkeypatch, SyncRoundResult(observed=3, applied=3))

    cli.main(["sync", "--once"])

    assert calls["once"] is True
    assert calls["app"] is calls["expected_app"]


def test_sync_once_fails_when_a_source_failed(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_sync(monkeypatch, SyncRoundResult(failed_sources=["bitskins"]))

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["sync", "--once"])

    assert excinfo.value.code == 1


def test_configuration_errors_are_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_build() -> object:
        raise RuntimeError("Missing configuration for: STEAM_ID")

    monkeypatch.setattr(cli, "build_app", broken_build)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["sync", "--once"])

    assert excinfo.value.code == 1


def test_replay_summarises_the_ledger(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    ledger = ItemLedger(TransitionContext(marketplaces=frozenset({Market.BITSKINS})))
    first, second = EventFeed(), EventFeed(make_identity("1002", pattern="9/0.1"))
    ledger.apply(first.arrived())
    ledger.apply(second.arrived())
    ledger.apply(second.listed(Market.BITSKINS))
    monkeypatch.setattr(cli, "replay_journal", lambda: ledger)

    with caplog.at_level(logging.INFO, logger="skinsync.ui.cli"):
        cli.main(["replay"])

    assert "Ledger rebuilt: items=2, flagged=0" in caplog.text
    states = Counter(str(record.state) for record in ledger.records())
    assert states == {"in_inventory": 1, "listed": 1}
    assert "listed: 1" in caplog.text
