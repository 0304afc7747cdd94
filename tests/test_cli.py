from __future__ import annotations

import pytest
from rich.console import Console

from dronehub import cli
from dronehub.engine.config import ReconcilerConfig
from dronehub.engine.models import (
    BatchCreateResult,
    CreatedDrone,
    CreateSpec,
    DroneRecord,
    RejectedCreate,
    SeedIntent,
)
from dronehub.engine.reconciler import Reconciler


class _DummyHub:
    """Stands in for HubClient inside the CLI commands."""

    instances: list["_DummyHub"] = []

    def __init__(self, base_url, session=None, timeout_seconds=30.0):
        self.base_url = base_url
        self.batches: list[list[CreateSpec]] = []
        _DummyHub.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    async def snapshot(self):
        return [DroneRecord(id="d1", name="alpha")]

    async def batch_create(self, specs):
        self.batches.append(list(specs))
        return BatchCreateResult(
            accepted=[CreatedDrone(id="id-a", name="a")],
            rejected=[RejectedCreate(name="b", error="duplicate name")],
            total=2,
        )

    async def delete(self, drone_id):
        return None


def _render(table) -> str:
    console = Console(record=True, width=160)
    console.print(table)
    return console.export_text()


def test_parser_subcommands():
    parser = cli.build_parser()
    args = parser.parse_args(["--hub-url", "http://h:1", "send", "alpha", "run tests", "--wait", "5"])
    assert args.command == "send"
    assert args.hub_url == "http://h:1"
    assert (args.drone, args.prompt, args.wait, args.chat) == ("alpha", "run tests", 5.0, None)

    args = parser.parse_args(["create", "a", "b", "--prompt", "go"])
    assert args.names == ["a", "b"]
    assert args.prompt == "go"

    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_render_marks_pending_and_selected():
    reconciler = Reconciler(_DummyHub("x"), _DummyHub("x"), ReconcilerConfig())
    reconciler.seeds.record(
        [CreatedDrone(id="id-new", name="new")],
        SeedIntent(),
        now=reconciler._clock(),
    )
    reconciler.apply_snapshot([DroneRecord(id="d1", name="alpha", busy=True)])
    reconciler.last_poll_error = "hub offline"

    text = _render(cli.render_drones(reconciler))
    assert "id-new" in text
    assert "pending" in text
    assert "alpha" in text
    assert "selected" in text
    assert "poll failed: hub offline" in text


def test_main_create_reports_rejections(monkeypatch):
    _DummyHub.instances.clear()
    monkeypatch.setattr(cli, "HubClient", _DummyHub)
    monkeypatch.setattr(cli, "_configure_logging", lambda level, log_file: None)

    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--hub-url", "http://hub:1", "create", "a", "b", "--prompt", "hi"])

    assert exc_info.value.code == 1
    hub = _DummyHub.instances[-1]
    assert hub.base_url == "http://hub:1"
    assert [s.name for s in hub.batches[0]] == ["a", "b"]
    assert hub.batches[0][0].seed_prompt == "hi"


def test_main_validation_error_exits_1(monkeypatch):
    monkeypatch.setattr(cli, "HubClient", _DummyHub)
    monkeypatch.setattr(cli, "_configure_logging", lambda level, log_file: None)
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["create", "Not Valid"])
    assert exc_info.value.code == 1


def test_main_delete(monkeypatch):
    monkeypatch.setattr(cli, "HubClient", _DummyHub)
    monkeypatch.setattr(cli, "_configure_logging", lambda level, log_file: None)
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["delete", "d1"])
    assert exc_info.value.code == 0
