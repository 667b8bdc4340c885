# api_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import quote, urlencode, urljoin

from .settings import TIMEOUT


class APIError(Exception):
    """Raised when API requests fail."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SubmissionGateway(Protocol):
    """What a session needs from the backend: load a preset, submit a run."""

    def get_workflow_preset(self, workflow_name: str, project_name: str, approval_ticket_id: str = "") -> Dict[str, Any]:
        ...

    def run_workflow(self, workitem_type_key: str, workitem_id: str, payload: Dict[str, Any]) -> int:
        ...


def _seg(value: Any) -> str:
    return quote(str(value), safe="")


class APIClient:
    """HTTP client for the workflow gateway."""

    def __init__(self, base_url: str, token: str = "", workspace_id: str = "", timeout: float = TIMEOUT):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the gateway (e.g., "https://zadig.example.com")
            token: API token, sent as a bearer token
            workspace_id: Host workspace, sent as X-WORKSPACE-ID when set
            timeout: Per-request timeout in seconds
        """
        # Ensure base_url doesn't end with /
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.workspace_id = workspace_id
        self.timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[dict] = None,
    ) -> Any:
        """
        Make an HTTP request to the gateway.

        Args:
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/api/plugin/aslan/workflow/v4/preset/x")
            data: Optional JSON data to send in request body
            params: Optional query parameters
            headers: Optional additional headers

        Returns:
            Parsed JSON response (dict or list)

        Raises:
            APIError: If the request fails
        """
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        if params:
            url += "?" + urlencode(params)

        req_headers = {
            "Content-Type": "application/json",
        }
        if self.token:
            req_headers["Authorization"] = f"Bearer {self.token}"
        if self.workspace_id:
            req_headers["X-WORKSPACE-ID"] = self.workspace_id
        if headers:
            req_headers.update(headers)

        req_data = None
        if data is not None:
            req_data = json.dumps(data).encode("utf-8")

        req = urllib.request.Request(url, data=req_data, headers=req_headers, method=method)

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                response_data = response.read().decode("utf-8")
                if response_data:
                    return json.loads(response_data)
                return {}
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else ""
            raise APIError(_error_message(e.code, e.reason, error_body), status=e.code)
        except urllib.error.URLError as e:
            raise APIError(f"Network error: {e.reason}")
        except json.JSONDecodeError as e:
            raise APIError(f"Invalid JSON response: {e}")

    # ------------------------------------------------------------------
    # Session start / submission
    # ------------------------------------------------------------------

    def get_workflow_preset(self, workflow_name: str, project_name: str, approval_ticket_id: str = "") -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/api/plugin/aslan/workflow/v4/preset/{_seg(workflow_name)}",
            params={"projectName": project_name, "approval_ticket_id": approval_ticket_id},
        )

    def run_workflow(self, workitem_type_key: str, workitem_id: str, payload: Dict[str, Any]) -> int:
        """Submit a run. Returns the backend task id."""
        response = self._request(
            "POST",
            f"/api/plugin/plugin/lark/workitem/{_seg(workitem_type_key)}/{_seg(workitem_id)}/workflow",
            data=payload,
        )
        if not isinstance(response, dict) or "task_id" not in response:
            raise APIError("Run submitted but no task_id in response")
        return response["task_id"]

    # ------------------------------------------------------------------
    # Enrichment lookups
    # ------------------------------------------------------------------

    def get_branch_info(self, repos: List[Dict[str, Any]], param: str = "") -> List[Dict[str, Any]]:
        return self._request("PUT", "/api/plugin/aslan/code/codehost/infos", data={"infos": repos}, params={"param": param}) or []

    def list_images(self, project_name: str, names: List[str], registry_id: str = "") -> List[Dict[str, Any]]:
        return self._request(
            "POST",
            "/api/plugin/aslan/system/registry/images",
            data={"names": names},
            params={"projectName": project_name, "registryId": registry_id},
        ) or []

    def list_nacos_configs(self, nacos_id: str, namespace_id: str) -> List[Dict[str, Any]]:
        return self._request(
            "GET",
            f"/api/plugin/aslan/system/nacos/{_seg(nacos_id)}/namespace/{_seg(namespace_id)}",
        ) or []

    def get_nacos_config_detail(self, nacos_id: str, namespace_id: str, group: str, data_id: str, project_name: str) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/api/plugin/aslan/system/configuration/nacos/{_seg(nacos_id)}/namespace/{_seg(namespace_id)}"
            f"/group/{_seg(group)}/data/{_seg(data_id)}",
            params={"projectName": project_name},
        )

    def list_databases(self, project_name: str) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/plugin/aslan/system/dbinstance/project", params={"projectName": project_name}) or []

    def validate_sql(self, db_type: str, sql: str) -> List[Dict[str, Any]]:
        response = self._request("POST", "/api/plugin/aslan/workflow/v4/sql/validate", data={"type": db_type, "sql": sql})
        return response if isinstance(response, list) else []

    def get_brief_users(self, query: Dict[str, Any], project_name: str = "") -> Dict[str, Any]:
        return self._request("POST", "/api/plugin/v1/users/brief", data=query, params={"projectName": project_name})


def _error_message(code: int, reason: str, body: str) -> str:
    """Prefer the backend's own message when it sends one."""
    try:
        parsed = json.loads(body) if body else {}
    except json.JSONDecodeError:
        parsed = {}
    if isinstance(parsed, dict):
        for k in ("message", "description", "error"):
            if parsed.get(k):
                return str(parsed[k])
    return f"API request failed: {code} {reason}. {body}"
