"""Per-call execution context shared by all handler executors."""

from __future__ import annotations

from dataclasses import dataclass, field

from lavs.manifest.schema import Permissions


@dataclass
class ExecutionContext:
    """Everything an executor needs to know about the call it is running.

    Built fresh by the dispatcher for every call and never persisted.
    ``workdir`` is the absolute agent directory; permission checks are always
    evaluated against it.
    """

    endpoint_id: str
    agent_id: str
    workdir: str
    permissions: Permissions = field(default_factory=Permissions)
    env: dict[str, str] | None = None
