"""
Cloud Resource Manager v3 client for tag keys, tag values and projects.

Thin async REST client over aiohttp. Mutating calls return long-running
operations which are polled to completion with wait_operation().
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

# HTTP statuses the tags API uses for entities that do not exist (yet).
# Looking up a missing namespaced tag returns 403 rather than 404.
ABSENT_STATUSES = (403, 404)
ABSENT_REASONS = ("PERMISSION_DENIED", "NOT_FOUND")


class ResourceManagerError(Exception):
    """Raised when the Resource Manager API returns an error response."""

    def __init__(self, status: int, message: str, reason: str = ""):
        self.status = status
        self.message = message
        self.reason = reason
        super().__init__(f"Resource Manager API error {status} {reason}: {message}")

    @property
    def is_absent(self) -> bool:
        """True when the error means the requested entity does not exist."""
        return self.status in ABSENT_STATUSES or self.reason in ABSENT_REASONS

    @classmethod
    def from_response(cls, status: int, body: str) -> "ResourceManagerError":
        """Build an error from a Google API error payload."""
        try:
            error = json.loads(body).get("error", {})
        except (ValueError, AttributeError):
            return cls(status, body)
        return cls(
            status,
            error.get("message", body),
            error.get("status", ""),
        )


class OperationError(Exception):
    """Raised when a long-running operation finishes with an error."""

    def __init__(self, operation: str, code: int, message: str):
        self.operation = operation
        self.code = code
        self.message = message
        super().__init__(f"Operation {operation} failed ({code}): {message}")


class _APIModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TagKey(_APIModel):
    """A tag key, e.g. name='tagKeys/123', namespaced_name='my-project/env'."""

    name: str
    parent: str = ""
    short_name: str = Field("", alias="shortName")
    namespaced_name: str = Field("", alias="namespacedName")
    description: str = ""
    etag: str = ""


class TagValue(_APIModel):
    """A tag value, e.g. name='tagValues/456', parent='tagKeys/123'."""

    name: str
    parent: str = ""
    short_name: str = Field("", alias="shortName")
    namespaced_name: str = Field("", alias="namespacedName")
    description: str = ""
    etag: str = ""


class Project(_APIModel):
    """Project metadata. name is 'projects/<number>'."""

    name: str
    project_id: str = Field("", alias="projectId")
    display_name: str = Field("", alias="displayName")
    parent: str = ""
    state: str = ""

    @property
    def project_number(self) -> str:
        return self.name.removeprefix("projects/")


class Operation(_APIModel):
    """A long-running operation."""

    name: str = ""
    done: bool = False
    error: Optional[Dict[str, Any]] = None
    response: Optional[Dict[str, Any]] = None


class ResourceManagerClient:
    """Async client for the tag and project endpoints of Resource Manager v3."""

    def __init__(
        self,
        api_base_url: str = "https://cloudresourcemanager.googleapis.com/v3",
        access_token: str = "",
        token_provider: Optional[TokenProvider] = None,
        poll_interval: float = 1.0,
        operation_timeout: float = 120.0,
        request_timeout: float = 30.0,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.access_token = access_token
        self.token_provider = token_provider
        self.poll_interval = poll_interval
        self.operation_timeout = operation_timeout
        self.request_timeout = request_timeout

        if not access_token and token_provider is None:
            logger.warning(
                "No GCP access token configured. Set GCP_ACCESS_TOKEN or "
                "provide a token provider."
            )

    # Tag keys

    async def get_namespaced_tag_key(self, name: str) -> TagKey:
        """Get a tag key by namespaced name '<project>/<shortName>'."""
        data = await self._request("GET", "tagKeys/namespaced", params={"name": name})
        return TagKey.model_validate(data)

    async def create_tag_key(self, parent: str, short_name: str) -> Operation:
        """Start creating a tag key under parent ('projects/<id>')."""
        data = await self._request(
            "POST", "tagKeys", payload={"parent": parent, "shortName": short_name}
        )
        return Operation.model_validate(data)

    async def delete_tag_key(self, name: str) -> Operation:
        """Start deleting a tag key ('tagKeys/<id>')."""
        data = await self._request("DELETE", name)
        return Operation.model_validate(data)

    # Tag values

    async def get_namespaced_tag_value(self, name: str) -> TagValue:
        """Get a tag value by namespaced name '<project>/<key>/<value>'."""
        data = await self._request(
            "GET", "tagValues/namespaced", params={"name": name}
        )
        return TagValue.model_validate(data)

    async def create_tag_value(self, parent: str, short_name: str) -> Operation:
        """Start creating a tag value under parent ('tagKeys/<id>')."""
        data = await self._request(
            "POST", "tagValues", payload={"parent": parent, "shortName": short_name}
        )
        return Operation.model_validate(data)

    async def delete_tag_value(self, name: str) -> Operation:
        """Start deleting a tag value ('tagValues/<id>')."""
        data = await self._request("DELETE", name)
        return Operation.model_validate(data)

    # Projects

    async def get_project(self, project_id: str) -> Project:
        """Get a project by id or number."""
        data = await self._request("GET", f"projects/{project_id}")
        return Project.model_validate(data)

    # Operations

    async def wait_operation(self, operation: Operation) -> Dict[str, Any]:
        """
        Poll a long-running operation until it is done.

        Returns:
            The operation's response payload (may be empty).

        Raises:
            OperationError: If the operation finished with an error.
            asyncio.TimeoutError: If it did not finish within operation_timeout.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while not operation.done:
            if loop.time() - start_time > self.operation_timeout:
                raise asyncio.TimeoutError(
                    f"Operation {operation.name} did not finish within "
                    f"{self.operation_timeout}s"
                )
            logger.debug(
                f"Operation {operation.name} pending, "
                f"waiting {self.poll_interval}s..."
            )
            await asyncio.sleep(self.poll_interval)
            data = await self._request("GET", operation.name)
            operation = Operation.model_validate(data)

        if operation.error:
            raise OperationError(
                operation.name,
                operation.error.get("code", 0),
                operation.error.get("message", ""),
            )

        return operation.response or {}

    # Private helper methods

    async def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for Resource Manager requests."""
        headers = {"Accept": "application/json"}
        token = self.access_token
        if self.token_provider is not None:
            token = await self.token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.api_base_url}/{path}"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)

        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(
                method,
                url,
                headers=await self._get_headers(),
                params=params,
                json=payload,
            ) as response:
                if response.status >= 400:
                    error = ResourceManagerError.from_response(
                        response.status, await response.text()
                    )
                    logger.debug(f"{method} {url} failed: {error}")
                    raise error
                if response.status == 204:
                    return {}
                return await response.json()
