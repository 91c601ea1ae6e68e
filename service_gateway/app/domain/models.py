"""
Request and response models for the gateway API.

Orchestrator payloads are opaque: request models only pin down the fields the
gateway itself reads and pass every other field through unchanged.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..auth.principal import Role


class CamelModel(BaseModel):
    """Serialized with camelCase keys, accepts either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PassThroughModel(BaseModel):
    """Extra fields are kept and forwarded to the orchestrator."""

    model_config = ConfigDict(extra="allow")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Auth

class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=1, max_length=256)


class LoginResponse(CamelModel):
    token: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    role: Role


# DAGs and runs

class DagUpdate(PassThroughModel):
    is_paused: Optional[bool] = None


class DagRunCreate(PassThroughModel):
    dag_run_id: Optional[str] = None
    logical_date: Optional[str] = None
    conf: Optional[Dict[str, Any]] = None
    note: Optional[str] = None


class DagRunStateUpdate(PassThroughModel):
    state: Literal["success", "failed", "queued"]


class DagRunNoteUpdate(PassThroughModel):
    note: str


class DagRunClear(PassThroughModel):
    dry_run: bool = False


class TaskInstanceStateUpdate(PassThroughModel):
    new_state: Literal["success", "failed", "skipped"]
    dry_run: bool = False


# Action logs

class ActionLogPage(CamelModel):
    logs: List[Dict[str, Any]]
    total_count: int
    page: int
    size: int


# Administration

class UserCreate(CamelModel):
    username: str = Field(..., min_length=1, max_length=150)
    password: str = Field(..., min_length=8, max_length=256)
    role: Role
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = Field(default=None, max_length=254)
    downstream_username: Optional[str] = None
    downstream_password: Optional[str] = Field(default=None, repr=False)
    is_active: bool = True


class UserActiveUpdate(BaseModel):
    active: bool
