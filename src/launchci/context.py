# context.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from .adapters.base import DeriveMode


@dataclass(frozen=True)
class HostContext:
    """
    What the embedding host tells us about this editing session.

    Purely contextual: nothing here changes while the session runs.
    """
    workitem_type_key: str = ""
    workitem_id: str = ""
    workflow_name: str = ""
    display_name: str = ""
    project_name: str = ""
    workspace_id: str = ""
    clone_workflow: Dict[str, Any] = field(default_factory=dict)
    stage_exec_mode: bool = False
    edit_runner: bool = False
    release_plan_mode: bool = False
    view_mode: bool = False
    approval_ticket: Optional[Dict[str, Any]] = None
    navigate: Optional[Callable[[str], None]] = None

    @classmethod
    def from_dict(cls, params: Optional[Dict[str, Any]], navigate: Optional[Callable[[str], None]] = None) -> "HostContext":
        params = params or {}
        return cls(
            workitem_type_key=params.get("workitemTypeKey") or "",
            workitem_id=str(params.get("workItemId") or ""),
            workflow_name=params.get("workflowName") or "",
            display_name=params.get("displayName") or "",
            project_name=params.get("projectName") or "",
            workspace_id=params.get("workspaceId") or "",
            clone_workflow=params.get("cloneWorkflow") or {},
            stage_exec_mode=bool(params.get("stageExecMode", False)),
            edit_runner=bool(params.get("editRunner", False)),
            release_plan_mode=bool(params.get("releasePlanMode", False)),
            view_mode=bool(params.get("viewMode", False)),
            approval_ticket=params.get("approvalTicket") or None,
            navigate=navigate,
        )

    @property
    def mode(self) -> DeriveMode:
        return DeriveMode(
            stage_exec_mode=self.stage_exec_mode,
            edit_runner=self.edit_runner,
            release_plan=self.release_plan_mode,
        )

    @property
    def approval_ticket_id(self) -> str:
        return str((self.approval_ticket or {}).get("id") or "")

    @property
    def has_clone(self) -> bool:
        return bool(self.clone_workflow.get("stages"))
