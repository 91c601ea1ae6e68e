"""
Mock Airflow server providing the subset of the stable REST API the gateway uses.
"""

import base64
import binascii
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Body, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from shared.logging import get_logger

API = "/api/v1"


def problem(status: int, title: str, detail: str) -> JSONResponse:
    """Airflow-style problem+json error body."""
    return JSONResponse(
        status_code=status,
        content={"status": status, "title": title, "detail": detail, "type": "about:blank"},
    )


class MockAirflowServer:
    """Mock Airflow server implementation."""

    def __init__(self, port: int = 8080):
        self.port = port
        self.logger = get_logger("mock.airflow")
        self.app = FastAPI(title="Mock Airflow", version="2.7.0")

        # Accepted Basic-auth users
        self.users = {"admin": "admin123", "airflow": "airflow"}

        self.dags: Dict[str, Dict[str, Any]] = {
            "example_etl": self._dag("example_etl", tasks=["extract", "transform", "load"]),
            "nightly_report": self._dag("nightly_report", tasks=["build", "send"], is_paused=True),
        }
        self.dag_runs: Dict[str, Dict[str, Dict[str, Any]]] = {dag_id: {} for dag_id in self.dags}
        self.task_states: Dict[Tuple[str, str, str], str] = {}

        # (METHOD, path) -> (status, body); consumed by the next matching request
        self.injected_errors: Dict[Tuple[str, str], Tuple[int, Any]] = {}
        # (method, path, basic-auth username) per request received
        self.requests: List[Tuple[str, str, Optional[str]]] = []

        self._setup_middleware()
        self._setup_routes()

    @staticmethod
    def _dag(dag_id: str, tasks: List[str], is_paused: bool = False) -> Dict[str, Any]:
        return {
            "dag_id": dag_id,
            "is_paused": is_paused,
            "is_active": True,
            "description": f"Mock DAG {dag_id}",
            "fileloc": f"/opt/airflow/dags/{dag_id}.py",
            "owners": ["airflow"],
            "tags": [{"name": "mock"}],
            "tasks": tasks,
        }

    def inject_error(self, method: str, path: str, status: int, body: Any = None):
        """Make the next ``method path`` request fail with ``status``."""
        self.injected_errors[(method.upper(), path)] = (status, body)

    def _basic_auth_user(self, request: Request) -> Optional[str]:
        header = request.headers.get("Authorization", "")
        scheme, _, encoded = header.partition(" ")
        if scheme.lower() != "basic":
            return None
        try:
            username, _, password = base64.b64decode(encoded).decode("utf-8").partition(":")
        except (binascii.Error, UnicodeDecodeError):
            return None
        if self.users.get(username) != password:
            return None
        return username

    def _setup_middleware(self):
        @self.app.middleware("http")
        async def check_auth(request: Request, call_next):
            username = self._basic_auth_user(request)
            self.requests.append((request.method, request.url.path, username))

            injected = self.injected_errors.pop((request.method, request.url.path), None)
            if injected is not None:
                status, body = injected
                if isinstance(body, str):
                    return PlainTextResponse(body, status_code=status)
                return JSONResponse(status_code=status, content=body or {"status": status})

            if request.url.path != f"{API}/health" and username is None:
                return problem(401, "Unauthorized", "Invalid credentials")
            return await call_next(request)

    def _get_dag(self, dag_id: str) -> Optional[Dict[str, Any]]:
        return self.dags.get(dag_id)

    def _get_run(self, dag_id: str, dag_run_id: str) -> Optional[Dict[str, Any]]:
        return self.dag_runs.get(dag_id, {}).get(dag_run_id)

    def _dag_view(self, dag: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in dag.items() if key != "tasks"}

    def _setup_routes(self):
        """Set up mock Airflow routes."""

        @self.app.get(f"{API}/health")
        async def health():
            return {"metadatabase": {"status": "healthy"}, "scheduler": {"status": "healthy"}}

        @self.app.get(f"{API}/dags")
        async def list_dags(
            limit: int = Query(100),
            offset: int = Query(0),
            paused: Optional[bool] = Query(None),
            only_active: bool = Query(True),
            dag_id_pattern: Optional[str] = Query(None),
        ):
            dags = [
                self._dag_view(dag) for dag in self.dags.values()
                if (paused is None or dag["is_paused"] == paused)
                and (not only_active or dag["is_active"])
                and (not dag_id_pattern or dag_id_pattern in dag["dag_id"])
            ]
            return {"dags": dags[offset:offset + limit], "total_entries": len(dags)}

        @self.app.get(f"{API}/dags/{{dag_id}}")
        async def get_dag(dag_id: str):
            dag = self._get_dag(dag_id)
            if dag is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            return self._dag_view(dag)

        @self.app.patch(f"{API}/dags/{{dag_id}}")
        async def update_dag(dag_id: str, body: Dict[str, Any] = Body(...)):
            dag = self._get_dag(dag_id)
            if dag is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            if "is_paused" in body:
                dag["is_paused"] = bool(body["is_paused"])
            return self._dag_view(dag)

        @self.app.delete(f"{API}/dags/{{dag_id}}")
        async def delete_dag(dag_id: str):
            if self.dags.pop(dag_id, None) is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            self.dag_runs.pop(dag_id, None)
            return Response(status_code=204)

        @self.app.get(f"{API}/dags/{{dag_id}}/details")
        async def get_dag_details(dag_id: str):
            dag = self._get_dag(dag_id)
            if dag is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            return {**self._dag_view(dag), "catchup": False, "schedule_interval": None}

        @self.app.get(f"{API}/dags/{{dag_id}}/tasks")
        async def get_tasks(dag_id: str):
            dag = self._get_dag(dag_id)
            if dag is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            tasks = [{"task_id": task_id, "owner": "airflow"} for task_id in dag["tasks"]]
            return {"tasks": tasks, "total_entries": len(tasks)}

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns")
        async def list_dag_runs(
            dag_id: str,
            state: Optional[List[str]] = Query(None),
            limit: int = Query(100),
            offset: int = Query(0),
        ):
            if self._get_dag(dag_id) is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            runs = [run for run in self.dag_runs[dag_id].values() if not state or run["state"] in state]
            return {"dag_runs": runs[offset:offset + limit], "total_entries": len(runs)}

        @self.app.post(f"{API}/dags/{{dag_id}}/dagRuns")
        async def trigger_dag_run(dag_id: str, body: Dict[str, Any] = Body(...)):
            dag = self._get_dag(dag_id)
            if dag is None:
                return problem(404, "DAG not found", f"DAG with dag_id: '{dag_id}' not found")
            now = datetime.now(timezone.utc).isoformat()
            dag_run_id = body.get("dag_run_id") or f"manual__{now}"
            if dag_run_id in self.dag_runs[dag_id]:
                return problem(409, "Conflict", f"DAGRun with DAG ID: '{dag_id}' and DAGRun ID: '{dag_run_id}' already exists")
            if body.get("conf") is not None and not isinstance(body["conf"], dict):
                return problem(400, "Bad Request", "conf must be an object")
            run = {
                "dag_id": dag_id,
                "dag_run_id": dag_run_id,
                "logical_date": body.get("logical_date") or now,
                "state": "queued",
                "conf": body.get("conf") or {},
                "note": body.get("note"),
            }
            self.dag_runs[dag_id][dag_run_id] = run
            for task_id in dag["tasks"]:
                self.task_states[(dag_id, dag_run_id, task_id)] = "scheduled"
            return run

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}")
        async def get_dag_run(dag_id: str, dag_run_id: str):
            run = self._get_run(dag_id, dag_run_id)
            if run is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            return run

        @self.app.patch(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}")
        async def update_dag_run_state(dag_id: str, dag_run_id: str, body: Dict[str, Any] = Body(...)):
            run = self._get_run(dag_id, dag_run_id)
            if run is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            if body.get("state") not in ("success", "failed", "queued"):
                return problem(400, "Bad Request", "Invalid state")
            run["state"] = body["state"]
            return run

        @self.app.delete(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}")
        async def delete_dag_run(dag_id: str, dag_run_id: str):
            if self.dag_runs.get(dag_id, {}).pop(dag_run_id, None) is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            return Response(status_code=204)

        @self.app.post(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/clear")
        async def clear_dag_run(dag_id: str, dag_run_id: str, body: Dict[str, Any] = Body(...)):
            run = self._get_run(dag_id, dag_run_id)
            if run is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            tasks = [
                {"dag_id": dag_id, "dag_run_id": dag_run_id, "task_id": task_id}
                for (d, r, task_id) in self.task_states if d == dag_id and r == dag_run_id
            ]
            if body.get("dry_run", True):
                return {"task_instances": tasks}
            run["state"] = "queued"
            return run

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/upstreamDatasetEvents")
        async def upstream_dataset_events(dag_id: str, dag_run_id: str):
            if self._get_run(dag_id, dag_run_id) is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            return {"dataset_events": [], "total_entries": 0}

        @self.app.patch(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/setNote")
        async def set_note(dag_id: str, dag_run_id: str, body: Dict[str, Any] = Body(...)):
            run = self._get_run(dag_id, dag_run_id)
            if run is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            run["note"] = body.get("note")
            return run

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/taskInstances")
        async def list_task_instances(dag_id: str, dag_run_id: str):
            if self._get_run(dag_id, dag_run_id) is None:
                return problem(404, "DAGRun not found", f"DAGRun with DAG ID: '{dag_id}' and DagRun ID: '{dag_run_id}' not found")
            instances = [
                {"dag_id": d, "dag_run_id": r, "task_id": task_id, "state": state, "try_number": 1}
                for (d, r, task_id), state in self.task_states.items() if d == dag_id and r == dag_run_id
            ]
            return {"task_instances": instances, "total_entries": len(instances)}

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/taskInstances/{{task_id}}")
        async def get_task_instance(dag_id: str, dag_run_id: str, task_id: str):
            state = self.task_states.get((dag_id, dag_run_id, task_id))
            if state is None:
                return problem(404, "Task instance not found", f"Task instance {task_id} not found")
            return {"dag_id": dag_id, "dag_run_id": dag_run_id, "task_id": task_id, "state": state, "try_number": 1}

        @self.app.patch(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/taskInstances/{{task_id}}")
        async def update_task_instance(dag_id: str, dag_run_id: str, task_id: str, body: Dict[str, Any] = Body(...)):
            key = (dag_id, dag_run_id, task_id)
            if key not in self.task_states:
                return problem(404, "Task instance not found", f"Task instance {task_id} not found")
            if not body.get("dry_run", True):
                self.task_states[key] = body.get("new_state", self.task_states[key])
            return {"task_id": task_id, "dag_id": dag_id, "dag_run_id": dag_run_id}

        @self.app.get(f"{API}/dags/{{dag_id}}/dagRuns/{{dag_run_id}}/taskInstances/{{task_id}}/logs/{{try_number}}")
        async def get_task_log(dag_id: str, dag_run_id: str, task_id: str, try_number: int):
            if (dag_id, dag_run_id, task_id) not in self.task_states:
                return problem(404, "Task instance not found", f"Task instance {task_id} not found")
            return PlainTextResponse(f"[{dag_id}/{dag_run_id}/{task_id}] attempt {try_number}: task started\n")


def create_app():
    """Create mock Airflow application."""
    server = MockAirflowServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8080)
