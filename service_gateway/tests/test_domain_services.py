"""
Unit tests for the gateway domain services.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from service_gateway.app.adapters.audit_sink import ActionType, InMemoryActionLogStore
from service_gateway.app.adapters.orchestrator_client import OrchestratorClient, ResponseShape
from service_gateway.app.auth.principal import ANONYMOUS, Authenticated, Role
from service_gateway.app.domain.action_logs import ActionLogService
from service_gateway.app.domain.actions import ActionRecorder
from service_gateway.app.domain.dags import DagRunService, DagService, TaskInstanceService
from service_gateway.app.domain.disconnect import run_while_connected
from service_gateway.app.domain.models import (
    DagRunClear,
    DagRunCreate,
    DagUpdate,
    TaskInstanceStateUpdate,
)
from shared.errors import ClientDisconnectedError, NotFoundError

OPERATOR = Authenticated(username="olivia", role=Role.OP,
                         downstream_username="airflow", downstream_password="airflow")
ADMIN = Authenticated(username="ada", role=Role.ADMIN)
VIEWER = Authenticated(username="vera", role=Role.VIEWER)


@pytest.fixture
def orchestrator():
    """Orchestrator client double."""
    client = MagicMock(spec=OrchestratorClient)
    client.get = AsyncMock(return_value={})
    client.post = AsyncMock(return_value={})
    client.patch = AsyncMock(return_value={})
    client.delete = AsyncMock(return_value=None)
    return client


@pytest.fixture
def sink():
    """In-memory action log."""
    return InMemoryActionLogStore()


@pytest.fixture
def recorder(sink):
    """Recorder with a short write timeout."""
    return ActionRecorder(sink, timeout=0.5)


class FailingSink(InMemoryActionLogStore):
    """Sink whose writes always fail."""

    async def log_action(self, entry):
        raise ConnectionError("database is down")


class SlowSink(InMemoryActionLogStore):
    """Sink whose writes wait until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def log_action(self, entry):
        self.started.set()
        await self.release.wait()
        return await super().log_action(entry)


class TestDagService:
    """Test cases for DagService."""

    @pytest.mark.asyncio
    async def test_list_dags_translates_paging(self, orchestrator, recorder):
        """Test page/size to limit/offset and filter names."""
        service = DagService(orchestrator, recorder)

        await service.list_dags(OPERATOR, is_active=True, search="etl", page=2, size=10)

        _, kwargs = orchestrator.get.call_args
        assert kwargs["query"] == {
            "only_active": True,
            "paused": None,
            "dag_id_pattern": "etl",
            "limit": 10,
            "offset": 20,
        }
        assert kwargs["principal"] is OPERATOR

    @pytest.mark.asyncio
    @pytest.mark.parametrize("is_paused,action_type,details", [
        (True, ActionType.PAUSED, "DAG paused"),
        (False, ActionType.UNPAUSED, "DAG unpaused"),
    ])
    async def test_pause_toggle_is_recorded(self, orchestrator, recorder, sink, is_paused, action_type, details):
        """Test that pausing and unpausing record the matching action."""
        orchestrator.patch.return_value = {"dag_id": "etl", "is_paused": is_paused}
        service = DagService(orchestrator, recorder)

        result = await service.update_dag(OPERATOR, "etl", DagUpdate(is_paused=is_paused))

        assert result["is_paused"] is is_paused
        _, kwargs = orchestrator.patch.call_args
        assert kwargs["body"] == {"is_paused": is_paused}

        entries, total = await sink.list_entries(None, 0, 10)
        assert total == 1
        assert entries[0].action_type == action_type
        assert entries[0].details == details
        assert entries[0].username == "olivia"
        assert entries[0].dag_id == "etl"

    @pytest.mark.asyncio
    async def test_failed_call_is_not_recorded(self, orchestrator, recorder, sink):
        """Test that only successful mutations are recorded."""
        orchestrator.patch.side_effect = NotFoundError("DAG not found: etl")
        service = DagService(orchestrator, recorder)

        with pytest.raises(NotFoundError):
            await service.update_dag(OPERATOR, "etl", DagUpdate(is_paused=True))

        _, total = await sink.list_entries(None, 0, 10)
        assert total == 0

    @pytest.mark.asyncio
    async def test_delete_dag_is_recorded(self, orchestrator, recorder, sink):
        """Test DAG deletion."""
        await DagService(orchestrator, recorder).delete_dag(OPERATOR, "etl")

        entries, _ = await sink.list_entries(None, 0, 10)
        assert entries[0].action_type == ActionType.DELETED


class TestDagRunService:
    """Test cases for DagRunService."""

    @pytest.mark.asyncio
    async def test_trigger_records_run_id_and_note(self, orchestrator, recorder, sink):
        """Test that a trigger is recorded with the created run id."""
        orchestrator.post.return_value = {"dag_id": "etl", "dag_run_id": "manual__1", "state": "queued"}
        service = DagRunService(orchestrator, recorder)

        result = await service.trigger_dag_run(OPERATOR, "etl", DagRunCreate(conf={"a": 1}, note="rerun"))

        assert result["dag_run_id"] == "manual__1"
        _, kwargs = orchestrator.post.call_args
        assert kwargs["body"] == {"conf": {"a": 1}, "note": "rerun"}

        entries, _ = await sink.list_entries(None, 0, 10)
        assert entries[0].action_type == ActionType.TRIGGERED
        assert entries[0].run_id == "manual__1"
        assert entries[0].details == "DAG Run triggered with note: rerun"

    @pytest.mark.asyncio
    async def test_trigger_succeeds_when_audit_write_fails(self, orchestrator):
        """Test that a failing sink never fails the caller."""
        orchestrator.post.return_value = {"dag_id": "etl", "dag_run_id": "manual__1"}
        service = DagRunService(orchestrator, ActionRecorder(FailingSink(), timeout=0.5))

        result = await service.trigger_dag_run(OPERATOR, "etl", DagRunCreate())

        assert result == {"dag_id": "etl", "dag_run_id": "manual__1"}

    @pytest.mark.asyncio
    async def test_dry_run_clear_is_not_recorded(self, orchestrator, recorder, sink):
        """Test that previews leave no audit trail."""
        service = DagRunService(orchestrator, recorder)

        await service.clear_dag_run(OPERATOR, "etl", "run1", DagRunClear(dry_run=True))
        _, total = await sink.list_entries(None, 0, 10)
        assert total == 0

        await service.clear_dag_run(OPERATOR, "etl", "run1", DagRunClear(dry_run=False))
        entries, total = await sink.list_entries(None, 0, 10)
        assert total == 1
        assert entries[0].action_type == ActionType.CLEARED
        assert entries[0].run_id == "run1"

    @pytest.mark.asyncio
    async def test_delete_dag_run_uses_both_ids(self, orchestrator, recorder):
        """Test path parameters of a DAG run call."""
        await DagRunService(orchestrator, recorder).delete_dag_run(OPERATOR, "etl", "run1")

        args, kwargs = orchestrator.delete.call_args
        assert args[0] == "/dags/{dag_id}/dagRuns/{dag_run_id}"
        assert kwargs["path_params"] == {"dag_id": "etl", "dag_run_id": "run1"}
        assert kwargs["resource"] == "DAG Run"


class TestTaskInstanceService:
    """Test cases for TaskInstanceService."""

    @pytest.mark.asyncio
    async def test_task_log_is_text(self, orchestrator, recorder):
        """Test that task logs are read as plain text for a try number."""
        orchestrator.get.return_value = "log line\n"
        service = TaskInstanceService(orchestrator, recorder)

        result = await service.get_task_log(OPERATOR, "etl", "run1", "load", try_number=2)

        assert result == "log line\n"
        args, kwargs = orchestrator.get.call_args
        assert args[0].endswith("/taskInstances/{task_id}/logs/{try_number}")
        assert kwargs["path_params"]["try_number"] == 2
        assert kwargs["shape"] == ResponseShape.TEXT

    @pytest.mark.asyncio
    async def test_state_change_recorded_unless_dry_run(self, orchestrator, recorder, sink):
        """Test task state changes."""
        service = TaskInstanceService(orchestrator, recorder)

        await service.update_task_instance_state(
            OPERATOR, "etl", "run1", "load", TaskInstanceStateUpdate(new_state="success", dry_run=True))
        await service.update_task_instance_state(
            OPERATOR, "etl", "run1", "load", TaskInstanceStateUpdate(new_state="failed"))

        entries, total = await sink.list_entries(None, 0, 10)
        assert total == 1
        assert entries[0].action_type == ActionType.TASK_STATE_CHANGED
        assert "failed" in entries[0].details


class TestActionRecorder:
    """Test cases for ActionRecorder."""

    @pytest.mark.asyncio
    async def test_returns_false_on_failure(self):
        """Test that sink errors are swallowed and reported."""
        recorder = ActionRecorder(FailingSink(), timeout=0.5)
        assert await recorder.record(OPERATOR, "etl", ActionType.TRIGGERED, "DAG Run triggered") is False

    @pytest.mark.asyncio
    async def test_times_out_slow_sink(self):
        """Test that a hanging sink is bounded by the timeout."""
        sink = SlowSink()
        recorder = ActionRecorder(sink, timeout=0.05)

        assert await recorder.record(OPERATOR, "etl", ActionType.TRIGGERED, "DAG Run triggered") is False
        _, total = await sink.list_entries(None, 0, 10)
        assert total == 0

    @pytest.mark.asyncio
    async def test_write_survives_caller_cancellation(self):
        """Test that an in-flight write completes if the request is cancelled."""
        sink = SlowSink()
        recorder = ActionRecorder(sink, timeout=1.0)

        task = asyncio.ensure_future(recorder.record(OPERATOR, "etl", ActionType.DELETED, "DAG deleted"))
        await sink.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        sink.release.set()
        await asyncio.sleep(0.05)
        _, total = await sink.list_entries(None, 0, 10)
        assert total == 1

    @pytest.mark.asyncio
    async def test_anonymous_recorded_as_unknown(self, sink, recorder):
        """Test the username of unauthenticated callers."""
        await recorder.record(ANONYMOUS, "etl", ActionType.OTHER, "DAG updated")
        entries, _ = await sink.list_entries(None, 0, 10)
        assert entries[0].username == "unknown"


class TestActionLogService:
    """Test cases for role-filtered action log reads."""

    @staticmethod
    async def populated(sink, recorder):
        await recorder.record(OPERATOR, "etl", ActionType.TRIGGERED, "DAG Run triggered")
        await recorder.record(OPERATOR, "report", ActionType.PAUSED, "DAG paused")
        await recorder.record(ADMIN, "etl", ActionType.DELETED, "DAG deleted")
        return ActionLogService(sink)

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, sink, recorder):
        """Test unfiltered reads for ADMIN."""
        service = await self.populated(sink, recorder)
        page = await service.list_logs(ADMIN, page=0, size=10)
        assert page.total_count == 3
        assert len(page.logs) == 3

    @pytest.mark.asyncio
    async def test_other_roles_see_only_their_own(self, sink, recorder):
        """Test owner filtering for non-admin roles."""
        service = await self.populated(sink, recorder)

        page = await service.list_logs(OPERATOR, page=0, size=10)
        assert page.total_count == 2
        assert {entry["username"] for entry in page.logs} == {"olivia"}

        assert (await service.list_logs(VIEWER)).total_count == 0

    @pytest.mark.asyncio
    async def test_filters_by_dag_and_type(self, sink, recorder):
        """Test per-DAG and per-type reads keep the owner filter."""
        service = await self.populated(sink, recorder)

        assert len(await service.logs_for_dag(ADMIN, "etl")) == 2
        assert len(await service.logs_for_dag(OPERATOR, "etl")) == 1
        paused = await service.logs_for_type(OPERATOR, ActionType.PAUSED)
        assert [entry["dagId"] for entry in paused] == ["report"]

    @pytest.mark.asyncio
    async def test_paging(self, sink, recorder):
        """Test page and size."""
        service = await self.populated(sink, recorder)

        page = await service.list_logs(ADMIN, page=1, size=2)
        assert page.total_count == 3
        assert len(page.logs) == 1
        assert page.page == 1
        assert page.size == 2


class TestRunWhileConnected:
    """Test cases for disconnect-aware execution."""

    @staticmethod
    def fake_request(disconnected_after: int):
        calls = {"count": 0}

        async def is_disconnected():
            calls["count"] += 1
            return calls["count"] > disconnected_after

        return SimpleNamespace(is_disconnected=is_disconnected, url=SimpleNamespace(path="/api/v1/dags"))

    @pytest.mark.asyncio
    async def test_returns_result_while_connected(self):
        """Test the normal path."""
        async def operation():
            await asyncio.sleep(0.02)
            return "done"

        assert await run_while_connected(self.fake_request(100), operation(), poll_interval=0.005) == "done"

    @pytest.mark.asyncio
    async def test_disconnect_cancels_operation(self):
        """Test that a client disconnect aborts the in-flight call."""
        cancelled = asyncio.Event()

        async def operation():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ClientDisconnectedError) as exc_info:
            await run_while_connected(self.fake_request(1), operation(), poll_interval=0.01)

        assert exc_info.value.status_code == 499
        await asyncio.wait_for(cancelled.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_operation_errors_propagate(self):
        """Test that domain errors pass through unchanged."""
        async def operation():
            raise NotFoundError("DAG not found: etl")

        with pytest.raises(NotFoundError):
            await run_while_connected(self.fake_request(100), operation(), poll_interval=0.01)
