"""
DAG, DAG run and task instance operations.

Each method performs one orchestrator call on behalf of ``principal`` and,
for mutating calls that succeed, records the action afterwards.
"""

from typing import Any, Dict, Optional

from ..adapters.audit_sink import ActionType
from ..adapters.orchestrator_client import OrchestratorClient, ResponseShape
from ..auth.principal import Principal
from .actions import ActionRecorder
from .models import (
    DagRunClear,
    DagRunCreate,
    DagRunNoteUpdate,
    DagRunStateUpdate,
    DagUpdate,
    TaskInstanceStateUpdate,
)

DAG_PATH = "/dags/{dag_id}"
DAG_RUNS_PATH = "/dags/{dag_id}/dagRuns"
DAG_RUN_PATH = "/dags/{dag_id}/dagRuns/{dag_run_id}"
TASK_INSTANCES_PATH = "/dags/{dag_id}/dagRuns/{dag_run_id}/taskInstances"
TASK_INSTANCE_PATH = "/dags/{dag_id}/dagRuns/{dag_run_id}/taskInstances/{task_id}"


class DagService:
    """Operations on DAG definitions."""

    def __init__(self, client: OrchestratorClient, recorder: ActionRecorder):
        self.client = client
        self.recorder = recorder

    async def list_dags(self, principal: Principal, *, is_active: Optional[bool] = None,
                        is_paused: Optional[bool] = None, search: Optional[str] = None,
                        page: int = 0, size: int = 10) -> Dict[str, Any]:
        return await self.client.get(
            "/dags",
            principal=principal,
            query={
                "only_active": is_active,
                "paused": is_paused,
                "dag_id_pattern": search or None,
                "limit": size,
                "offset": page * size,
            },
            resource="DAGs",
        )

    async def get_dag(self, principal: Principal, dag_id: str) -> Dict[str, Any]:
        return await self.client.get(DAG_PATH, principal=principal,
                                     path_params={"dag_id": dag_id}, resource="DAG")

    async def get_dag_details(self, principal: Principal, dag_id: str) -> Dict[str, Any]:
        return await self.client.get(f"{DAG_PATH}/details", principal=principal,
                                     path_params={"dag_id": dag_id}, resource="DAG")

    async def get_tasks(self, principal: Principal, dag_id: str) -> Dict[str, Any]:
        return await self.client.get(f"{DAG_PATH}/tasks", principal=principal,
                                     path_params={"dag_id": dag_id}, resource="DAG")

    async def update_dag(self, principal: Principal, dag_id: str, update: DagUpdate) -> Dict[str, Any]:
        dag = await self.client.patch(
            DAG_PATH,
            principal=principal,
            path_params={"dag_id": dag_id},
            body=update.to_payload(),
            resource="DAG",
        )

        if update.is_paused is None:
            action_type, details = ActionType.OTHER, "DAG updated"
        elif update.is_paused:
            action_type, details = ActionType.PAUSED, "DAG paused"
        else:
            action_type, details = ActionType.UNPAUSED, "DAG unpaused"

        await self.recorder.record(principal, dag_id, action_type, details)
        return dag

    async def delete_dag(self, principal: Principal, dag_id: str) -> None:
        await self.client.delete(DAG_PATH, principal=principal,
                                 path_params={"dag_id": dag_id}, resource="DAG")
        await self.recorder.record(principal, dag_id, ActionType.DELETED, "DAG deleted")


class DagRunService:
    """Operations on DAG runs."""

    def __init__(self, client: OrchestratorClient, recorder: ActionRecorder):
        self.client = client
        self.recorder = recorder

    async def list_dag_runs(self, principal: Principal, dag_id: str, *, state: Optional[list] = None,
                            order_by: Optional[str] = None, page: int = 0, size: int = 25) -> Dict[str, Any]:
        return await self.client.get(
            DAG_RUNS_PATH,
            principal=principal,
            path_params={"dag_id": dag_id},
            query={
                "state": state,
                "order_by": order_by,
                "limit": size,
                "offset": page * size,
            },
            resource="DAG",
        )

    async def trigger_dag_run(self, principal: Principal, dag_id: str, request: DagRunCreate) -> Dict[str, Any]:
        dag_run = await self.client.post(
            DAG_RUNS_PATH,
            principal=principal,
            path_params={"dag_id": dag_id},
            body=request.to_payload(),
            resource="DAG",
        )

        details = "DAG Run triggered"
        if request.note:
            details += f" with note: {request.note}"
        run_id = dag_run.get("dag_run_id") if isinstance(dag_run, dict) else None

        await self.recorder.record(principal, dag_id, ActionType.TRIGGERED, details, run_id=run_id)
        return dag_run

    async def get_dag_run(self, principal: Principal, dag_id: str, dag_run_id: str) -> Dict[str, Any]:
        return await self.client.get(DAG_RUN_PATH, principal=principal,
                                     path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
                                     resource="DAG Run")

    async def delete_dag_run(self, principal: Principal, dag_id: str, dag_run_id: str) -> None:
        await self.client.delete(DAG_RUN_PATH, principal=principal,
                                 path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
                                 resource="DAG Run")
        await self.recorder.record(principal, dag_id, ActionType.DELETED,
                                   f"DAG Run deleted: {dag_run_id}", run_id=dag_run_id)

    async def update_dag_run_state(self, principal: Principal, dag_id: str, dag_run_id: str,
                                   update: DagRunStateUpdate) -> Dict[str, Any]:
        dag_run = await self.client.patch(
            DAG_RUN_PATH,
            principal=principal,
            path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
            body=update.to_payload(),
            resource="DAG Run",
        )
        await self.recorder.record(principal, dag_id, ActionType.OTHER,
                                   f"DAG Run state changed to: {update.state}", run_id=dag_run_id)
        return dag_run

    async def clear_dag_run(self, principal: Principal, dag_id: str, dag_run_id: str,
                            request: DagRunClear) -> Dict[str, Any]:
        result = await self.client.post(
            f"{DAG_RUN_PATH}/clear",
            principal=principal,
            path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
            body=request.to_payload(),
            resource="DAG Run",
        )
        # A dry run only previews the affected task instances
        if not request.dry_run:
            await self.recorder.record(principal, dag_id, ActionType.CLEARED, "DAG Run cleared",
                                       run_id=dag_run_id)
        return result

    async def get_upstream_dataset_events(self, principal: Principal, dag_id: str,
                                          dag_run_id: str) -> Dict[str, Any]:
        return await self.client.get(f"{DAG_RUN_PATH}/upstreamDatasetEvents", principal=principal,
                                     path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
                                     resource="DAG Run")

    async def set_note(self, principal: Principal, dag_id: str, dag_run_id: str,
                       update: DagRunNoteUpdate) -> Dict[str, Any]:
        dag_run = await self.client.patch(
            f"{DAG_RUN_PATH}/setNote",
            principal=principal,
            path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
            body=update.to_payload(),
            resource="DAG Run",
        )
        await self.recorder.record(principal, dag_id, ActionType.OTHER,
                                   f"Note updated: {update.note}", run_id=dag_run_id)
        return dag_run


class TaskInstanceService:
    """Operations on task instances and their logs."""

    def __init__(self, client: OrchestratorClient, recorder: ActionRecorder):
        self.client = client
        self.recorder = recorder

    async def list_task_instances(self, principal: Principal, dag_id: str, dag_run_id: str) -> Dict[str, Any]:
        return await self.client.get(TASK_INSTANCES_PATH, principal=principal,
                                     path_params={"dag_id": dag_id, "dag_run_id": dag_run_id},
                                     resource="DAG Run")

    async def get_task_instance(self, principal: Principal, dag_id: str, dag_run_id: str,
                                task_id: str) -> Dict[str, Any]:
        return await self.client.get(
            TASK_INSTANCE_PATH,
            principal=principal,
            path_params={"dag_id": dag_id, "dag_run_id": dag_run_id, "task_id": task_id},
            resource="Task Instance",
        )

    async def update_task_instance_state(self, principal: Principal, dag_id: str, dag_run_id: str,
                                         task_id: str, update: TaskInstanceStateUpdate) -> Dict[str, Any]:
        result = await self.client.patch(
            TASK_INSTANCE_PATH,
            principal=principal,
            path_params={"dag_id": dag_id, "dag_run_id": dag_run_id, "task_id": task_id},
            body=update.to_payload(),
            resource="Task Instance",
        )
        if not update.dry_run:
            await self.recorder.record(
                principal, dag_id, ActionType.TASK_STATE_CHANGED,
                f"Task {task_id} state changed to: {update.new_state}", run_id=dag_run_id,
            )
        return result

    async def get_task_log(self, principal: Principal, dag_id: str, dag_run_id: str,
                           task_id: str, try_number: int = 1) -> str:
        return await self.client.get(
            f"{TASK_INSTANCE_PATH}/logs/{{try_number}}",
            principal=principal,
            path_params={
                "dag_id": dag_id,
                "dag_run_id": dag_run_id,
                "task_id": task_id,
                "try_number": try_number,
            },
            shape=ResponseShape.TEXT,
            resource="Task log",
        )
