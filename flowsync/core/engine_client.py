"""Async HTTP client for the workflow engine's REST API."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from ..models.core import EngineWorkflowDocument, RemoteExecution, TriggerResult
from .exceptions import ConfigurationError, RemoteRejected, RemoteUnavailable
from .logging import get_logger

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
API_KEY_HEADER = "X-N8N-API-KEY"

# Engine statuses after which a run will not change any more
FINISHED_STATUSES = frozenset({"success", "error", "crashed", "canceled"})
ERROR_STATUSES = frozenset({"error", "crashed", "canceled"})


@dataclass
class EngineCredentials:
    """Connection settings for one engine instance.

    Exactly one auth scheme is used: the API key when it is set, otherwise
    HTTP basic credentials.
    """
    base_url: str
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 30.0

    def auth_headers(self) -> Dict[str, str]:
        if self.api_key:
            return {API_KEY_HEADER: self.api_key}
        return {}

    def basic_auth(self) -> Optional[httpx.BasicAuth]:
        if self.api_key:
            return None
        if self.username and self.password:
            return httpx.BasicAuth(self.username, self.password)
        return None

    def validate(self):
        if not self.base_url:
            raise ConfigurationError("Engine base URL is not configured", config_key="engine_base_url")
        if not self.api_key and not (self.username and self.password):
            raise ConfigurationError(
                "Engine credentials are not configured: set an API key or a username and password",
                config_key="engine_api_key",
            )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Ignoring unparseable engine timestamp: {value}")
        return None


def interpret_execution(payload: Dict[str, Any]) -> RemoteExecution:
    """Read the engine's execution payload into a RemoteExecution."""
    status = payload.get("status")
    result_data = ((payload.get("data") or {}).get("resultData")) or {}
    error_info = result_data.get("error")

    finished = bool(payload.get("finished")) or status in FINISHED_STATUSES
    succeeded = finished and not error_info and status not in ERROR_STATUSES

    return RemoteExecution(
        id=str(payload.get("id", "")),
        finished=finished,
        succeeded=succeeded,
        status=status,
        output_data=result_data.get("runData"),
        error_info=error_info,
        started_at=_parse_timestamp(payload.get("startedAt")),
        stopped_at=_parse_timestamp(payload.get("stoppedAt")),
    )


class EngineClient:
    """Thin async wrapper over the engine API; never retries on its own."""

    def __init__(
        self,
        credentials: EngineCredentials,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        credentials.validate()
        self.credentials = credentials
        self.base_url = credentials.base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                **credentials.auth_headers(),
            },
            auth=credentials.basic_auth(),
            timeout=credentials.timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{API_PREFIX}{path}"
        logger.debug(f"Engine request: {method} {url}")

        try:
            response = await self._client.request(method, url, json=json, params=params)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            logger.warning(f"Engine unreachable at {self.base_url}: {e}")
            raise RemoteUnavailable(
                f"Workflow engine unreachable: {type(e).__name__}",
                url=f"{self.base_url}{url}",
                cause=str(e),
            ) from e

        if response.status_code >= 400:
            logger.warning(f"Engine rejected {method} {url}: {response.status_code}")
            raise RemoteRejected(
                f"Workflow engine rejected {method} {url} with status {response.status_code}",
                status_code=response.status_code,
                url=f"{self.base_url}{url}",
                body=response.text,
            )

        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and set(body.keys()) == {"data"}:
            return body["data"]
        return body

    # Workflows

    async def list_workflows(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit else None
        result = await self._request("GET", "/workflows", params=params)
        if isinstance(result, dict):
            return result.get("data", [])
        return result or []

    async def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/workflows/{workflow_id}")

    async def create_workflow(self, document: EngineWorkflowDocument) -> Dict[str, Any]:
        result = await self._request("POST", "/workflows", json=document.to_payload())
        logger.info(f"Created engine workflow '{document.name}' ({result.get('id')})")
        return result

    async def update_workflow(self, workflow_id: str, document: EngineWorkflowDocument) -> Dict[str, Any]:
        result = await self._request("PUT", f"/workflows/{workflow_id}", json=document.to_payload())
        logger.info(f"Updated engine workflow {workflow_id}")
        return result

    async def set_active(self, workflow_id: str, active: bool) -> Dict[str, Any]:
        result = await self._request("PUT", f"/workflows/{workflow_id}", json={"active": active})
        logger.info(f"{'Activated' if active else 'Deactivated'} engine workflow {workflow_id}")
        return result

    # Executions

    async def trigger_execution(
        self,
        workflow_id: str,
        input_data: Optional[Dict[str, Any]] = None,
        start_node_name: Optional[str] = None,
    ) -> TriggerResult:
        payload = {"workflowData": input_data or {}, "startNode": start_node_name}
        result = await self._request("POST", f"/workflows/{workflow_id}/execute", json=payload)

        execution_id = None
        if isinstance(result, dict):
            execution_id = result.get("executionId") or result.get("id")
        if not execution_id:
            raise RemoteRejected(
                "Workflow engine did not return an execution id",
                status_code=502,
                url=f"{self.base_url}{API_PREFIX}/workflows/{workflow_id}/execute",
                body=str(result),
            )
        return TriggerResult(external_execution_id=str(execution_id))

    async def get_execution(self, external_execution_id: str) -> RemoteExecution:
        result = await self._request(
            "GET",
            f"/executions/{external_execution_id}",
            params={"includeData": "true"},
        )
        return interpret_execution(result or {"id": external_execution_id})

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = 20,
    ) -> List[RemoteExecution]:
        params: Dict[str, Any] = {"limit": limit}
        if workflow_id:
            params["workflowId"] = workflow_id
        result = await self._request("GET", "/executions", params=params)
        items = result.get("data", []) if isinstance(result, dict) else (result or [])
        return [interpret_execution(item) for item in items]

    # Misc

    async def test_connectivity(self) -> bool:
        """Probe the API; any failure is reported as ``False``."""
        try:
            await self._request("GET", "/workflows", params={"limit": 1})
            return True
        except (RemoteUnavailable, RemoteRejected) as e:
            logger.warning(f"Engine connectivity check failed: {e.message}")
            return False

    def webhook_url(self, path: str, test: bool = False) -> str:
        prefix = "webhook-test" if test else "webhook"
        return f"{self.base_url}/{prefix}/{path.lstrip('/')}"
