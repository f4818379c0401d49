"""
CASCADE - Persistence endpoint client.
REST over a project resource keyed by id. Responses arrive wrapped as {"message": ..., "data": ...};
callers get the unwrapped data. Non-2xx responses and transport failures become PersistenceError.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx

from state.models import Instance, Mapping, Project
from utils.errors import NotFoundError, PersistenceConflict, PersistenceError

logger = logging.getLogger(__name__)

CONFLICT_STATUSES = (401, 403, 409)


def _error_for(response: httpx.Response) -> PersistenceError:
    try:
        body = response.json()
    except ValueError:
        body = {"message": response.text[:200]}
    message = (body or {}).get("message") if isinstance(body, dict) else None
    message = message or f"HTTP {response.status_code}"
    details = body.get("details") if isinstance(body, dict) else None
    code = body.get("code") if isinstance(body, dict) else None
    if response.status_code == 404:
        return NotFoundError(message, response.status_code, details, code)
    if response.status_code in CONFLICT_STATUSES:
        return PersistenceConflict(message, response.status_code, details, code)
    return PersistenceError(message, response.status_code, details, code)


class ApiClient:
    """Thin async JSON client. A new httpx.AsyncClient per request; `transport` is for tests."""

    def __init__(self, base_url: str, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self.transport = transport

    async def request(self, method: str, path: str, params: Dict[str, Any] = None, json: Any = None) -> Any:
        logger.debug("[API Request] %s %s", method, path)
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error("[API Error] %s %s timed out: %s", method, path, e)
            raise PersistenceError(f"{method} {path} timed out", code="timeout") from e
        except httpx.TransportError as e:
            logger.error("[API Error] %s %s unreachable: %s", method, path, e)
            raise PersistenceError(f"Persistence endpoint unreachable: {e}", code="unreachable") from e

        logger.debug("[API Response] %s %s %d", method, path, response.status_code)
        if response.is_error:
            error = _error_for(response)
            logger.error("[API Error] %s %s %d: %s", method, path, response.status_code, error.message)
            raise error
        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            logger.error("[API Error] %s %s returned non-JSON body: %s", method, path, response.text[:200])
            raise PersistenceError(
                f"{method} {path} returned an unreadable response",
                response.status_code, code="invalid_response",
            ) from e
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def get(self, path: str, params: Dict[str, Any] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None) -> Any:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Any = None, params: Dict[str, Any] = None) -> Any:
        return await self.request("PUT", path, params=params, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)


def mapping_id(instance: Instance, tab_name: str) -> str:
    """Stable id for one mapping tab of one instance."""
    return hashlib.sha1(instance.cache_key(tab_name).encode("utf-8")).hexdigest()


class ProjectsApi:
    def __init__(self, client: ApiClient):
        self.client = client

    async def list_projects(self, user_id: str) -> List[Project]:
        data = await self.client.get("projects", params={"userId": user_id})
        return [Project.from_dict(p) for p in data or ()]

    async def get_project(self, project_id: str) -> Project:
        return Project.from_dict(await self.client.get(f"projects/{project_id}"))

    async def create_project(self, project: Project) -> Project:
        data = await self.client.post("projects", json=project.to_dict())
        return Project.from_dict(data)

    async def update_project(self, project: Project) -> None:
        await self.client.put(f"projects/{project.id}", json=project.to_dict())

    async def delete_project(self, project_id: str) -> None:
        await self.client.delete(f"projects/{project_id}")

    async def save_mapping(self, user_id: str, instance: Instance, mapping: Mapping) -> None:
        payload = {
            "server": instance.server,
            "database": instance.database,
            "table": instance.table,
            **mapping.to_dict(),
        }
        await self.client.put(
            f"mappings/{mapping_id(instance, mapping.tab_name)}",
            json=payload,
            params={"userId": user_id},
        )
