"""Tests for deployment state persistence."""

import json
import logging
import threading
from datetime import timedelta

import pytest

from agentctl.core.exceptions import ConcurrentModification, DeploymentError, DeploymentNotFound
from agentctl.deploy.models import Deployment, DeploymentStatus, LogLevel
from agentctl.deploy.state import DeploymentState


class TestDeploymentState:
    """Tests for DeploymentState."""

    def test_create_and_load(self, state):
        deployment = Deployment(config_id="cfg", version="1.0.0", environment="staging")
        state.create(deployment)

        loaded = state.load(deployment.id)

        assert loaded.id == deployment.id
        assert loaded.version == "1.0.0"
        assert loaded.revision == 1

    def test_create_twice_raises(self, state):
        deployment = state.create(Deployment())
        with pytest.raises(DeploymentError):
            state.create(Deployment(id=deployment.id))

    def test_load_missing(self, state):
        with pytest.raises(DeploymentNotFound):
            state.load("missing")

    def test_save_bumps_revision(self, state):
        deployment = state.create(Deployment())
        deployment.version = "2.0.0"
        state.save(deployment)

        assert deployment.revision == 2
        assert state.load(deployment.id).version == "2.0.0"

    def test_stale_save_raises(self, state):
        deployment = state.create(Deployment())
        first = state.load(deployment.id)
        second = state.load(deployment.id)

        first.version = "a"
        state.save(first)

        second.version = "b"
        with pytest.raises(ConcurrentModification):
            state.save(second)
        assert state.load(deployment.id).version == "a"

    def test_update_returns_saved_record(self, state):
        deployment = state.create(Deployment(status=DeploymentStatus.DEPLOYING))

        updated = state.update(deployment.id, lambda d: d.transition_to(DeploymentStatus.TESTING))

        assert updated.status == DeploymentStatus.TESTING
        assert state.load(deployment.id).status == DeploymentStatus.TESTING

    def test_failed_mutation_is_not_saved(self, state):
        deployment = state.create(Deployment(status=DeploymentStatus.COMPLETED))

        with pytest.raises(DeploymentError):
            state.update(deployment.id, lambda d: d.transition_to(DeploymentStatus.DEPLOYING))

        assert state.load(deployment.id).revision == deployment.revision

    def test_logs_are_append_only(self, state):
        deployment = state.create(Deployment())
        state.update(deployment.id, lambda d: d.add_log(LogLevel.INFO, "first"))
        state.update(deployment.id, lambda d: d.add_log(LogLevel.WARN, "second"))

        log_file = state.state_dir / f"{deployment.id}.log.jsonl"
        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert [line["message"] for line in lines] == ["first", "second"]

        record = json.loads((state.state_dir / f"{deployment.id}.json").read_text())
        assert "logs" not in record

        assert [e.message for e in state.load(deployment.id).logs] == ["first", "second"]

    def test_persisted_entries_reach_audit_logger(self, state, caplog):
        deployment = state.create(Deployment())

        with caplog.at_level(logging.INFO, logger="agentctl.audit"):
            state.update(deployment.id, lambda d: d.add_log(LogLevel.WARN, "Backup failed: timeout"))

        records = [r for r in caplog.records if r.name == "agentctl.audit"]
        assert len(records) == 1
        assert records[0].levelno == logging.WARNING
        assert records[0].getMessage().startswith("Backup failed: timeout")
        assert f"deployment={deployment.id}" in records[0].getMessage()

    def test_concurrent_updates_are_serialized(self, state):
        deployment = state.create(Deployment())

        def append(n: int) -> None:
            state.update(deployment.id, lambda d: d.add_log(LogLevel.INFO, f"entry {n}"))

        threads = [threading.Thread(target=append, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        loaded = state.load(deployment.id)
        assert len(loaded.logs) == 10
        assert loaded.revision == 11

    def test_list_newest_first_with_filters(self, state):
        older = Deployment(environment="staging", status=DeploymentStatus.COMPLETED)
        newer = Deployment(environment="staging", status=DeploymentStatus.FAILED)
        newer.start_time = older.start_time + timedelta(minutes=5)
        other = Deployment(environment="production", status=DeploymentStatus.COMPLETED)
        other.start_time = older.start_time - timedelta(minutes=5)
        for d in (older, newer, other):
            state.create(d)

        assert [d.id for d in state.list()] == [newer.id, older.id, other.id]
        assert [d.id for d in state.list(environment="staging")] == [newer.id, older.id]
        assert [d.id for d in state.list(status=DeploymentStatus.COMPLETED)] == [older.id, other.id]
        assert len(state.list(limit=1)) == 1

    def test_list_skips_corrupt_files(self, state):
        state.create(Deployment())
        (state.state_dir / "broken.json").write_text("{not json")

        assert len(state.list()) == 1

    def test_default_state_dir(self, tmp_path, monkeypatch):
        monkeypatch.setattr("pathlib.Path.home", lambda: tmp_path)
        state = DeploymentState()
        assert state.state_dir == tmp_path / ".agentctl" / "deployments"
        assert state.state_dir.exists()
