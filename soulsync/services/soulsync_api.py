"""
SoulSync backend API client.
Wraps the relationship/import endpoints the import workflow depends on,
attaches the session bearer token and performs a one-shot token refresh on 401.
"""

import asyncio
from typing import Any

import httpx

from soulsync.config import settings
from soulsync.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 502, 503, 504}
RETRYABLE_METHODS = {"GET"}

DEFAULT_ERROR_MESSAGES = {
    "import_chat": "Error importing chat history",
    "get_import_status": "Error checking import status",
    "get_import_analysis": "Error fetching import analysis",
    "recalculate_metrics": "Error updating relationship metrics",
    "analyze_topics": "Error analyzing relationship topics",
    "update_topic_distribution": "Error updating relationship topics",
    "get_conversations": "Error checking conversations",
    "get_detailed_profile": "Error checking analysis status",
    "analyze_relationship": "Error refreshing analysis",
    "refresh_token": "Your session has expired. Please sign in again.",
}


class SoulSyncApiError(Exception):
    """Raised for any failed call to the SoulSync backend."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_data: Any = None,
        operation: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data if response_data is not None else {}
        self.operation = operation


class AuthenticationExpiredError(SoulSyncApiError):
    """The access token was rejected and could not be refreshed."""


class SoulSyncApiClient:
    """
    Async client for the SoulSync backend.

    One instance per client session: the token store it holds decides which
    bearer token goes out on every request.
    """

    def __init__(
        self,
        token_store,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        max_retries: int | None = None,
        backoff_factor: float | None = None,
    ):
        self.token_store = token_store
        self.base_url = (base_url or settings.api_base_url()).rstrip("/")
        self.max_retries = settings.API_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_factor = (
            settings.API_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        )
        self._client = self._create_client(transport)

    def _create_client(self, transport: httpx.AsyncBaseTransport | None) -> httpx.AsyncClient:
        timeout = httpx.Timeout(settings.API_REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=10, max_connections=20)
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, limits=limits, transport=transport
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request, retrying idempotent calls on throttling and gateway errors."""
        attempts = 1 + (self.max_retries if method in RETRYABLE_METHODS else 0)
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, path, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < attempts:
                    backoff = self.backoff_factor * (2 ** (attempt - 1))
                    logger.debug(
                        "SoulSync API retrying request",
                        path=path,
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= attempts:
                    raise
                backoff = self.backoff_factor * (2 ** (attempt - 1))
                logger.debug(
                    "SoulSync API request error, retrying",
                    path=path,
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("SoulSync API retry loop exhausted")

    async def _auth_headers(self) -> dict:
        token = await self.token_store.get_access_token()
        if not token:
            logger.debug("No access token available for request")
            return {"Accept": "application/json"}
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _refresh_access_token(self) -> str:
        """Exchange the stored refresh token for a new access token."""
        refresh_token = await self.token_store.get_refresh_token()
        if not refresh_token:
            await self.token_store.clear()
            raise AuthenticationExpiredError(
                DEFAULT_ERROR_MESSAGES["refresh_token"], status_code=401, operation="refresh_token"
            )

        try:
            response = await self._client.post(
                "/auth/refresh-token", json={"refreshToken": refresh_token}
            )
        except httpx.RequestError as e:
            await self.token_store.clear()
            raise AuthenticationExpiredError(
                DEFAULT_ERROR_MESSAGES["refresh_token"], operation="refresh_token"
            ) from e

        token = None
        if response.is_success:
            try:
                token = response.json().get("token")
            except ValueError:
                token = None

        if not token:
            logger.warning("Token refresh rejected", status_code=response.status_code)
            await self.token_store.clear()
            raise AuthenticationExpiredError(
                DEFAULT_ERROR_MESSAGES["refresh_token"],
                status_code=response.status_code,
                operation="refresh_token",
            )

        await self.token_store.save_access_token(token)
        logger.info("Access token refreshed")
        return token

    async def _call(self, method: str, path: str, operation: str, **kwargs) -> Any:
        """Send an authenticated request and return the decoded body."""
        try:
            headers = await self._auth_headers()
            response = await self._request_with_retry(method, path, headers=headers, **kwargs)

            if response.status_code == 401:
                logger.info("Access token rejected, refreshing", operation=operation)
                token = await self._refresh_access_token()
                headers["Authorization"] = f"Bearer {token}"
                response = await self._request_with_retry(method, path, headers=headers, **kwargs)

            return self._handle_api_response(response, operation)

        except SoulSyncApiError:
            raise
        except httpx.RequestError as e:
            logger.error("SoulSync API transport error", operation=operation, error=str(e))
            raise SoulSyncApiError(DEFAULT_ERROR_MESSAGES[operation], operation=operation) from e

    def _handle_api_response(self, response: httpx.Response, operation: str) -> Any:
        """
        Validate a backend response.

        Args:
            response: HTTP response from the backend
            operation: Operation name for logging and default messages

        Returns:
            Parsed JSON body ({} for an empty body)

        Raises:
            SoulSyncApiError: If the response is not a success
        """
        logger.debug(
            f"SoulSync API {operation} response",
            status_code=response.status_code,
            response_size=len(response.content),
        )

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"Failed to parse SoulSync API {operation} response", error=str(e))
                raise SoulSyncApiError(
                    DEFAULT_ERROR_MESSAGES[operation],
                    status_code=response.status_code,
                    operation=operation,
                ) from e

        try:
            error_data = response.json() if response.content else {}
        except ValueError:
            error_data = {}

        message = None
        if isinstance(error_data, dict):
            message = error_data.get("message")
        message = message or DEFAULT_ERROR_MESSAGES[operation]

        logger.error(
            f"SoulSync API {operation} failed",
            status_code=response.status_code,
            error_message=message,
        )
        raise SoulSyncApiError(
            message,
            status_code=response.status_code,
            response_data=error_data,
            operation=operation,
        )

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    async def import_chat(
        self,
        relationship_id: str,
        filename: str,
        content: bytes,
        source: str,
        contact_phone: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> dict:
        """Upload a chat export. Returns {conversationId, messageCount}."""
        data = {"source": source}
        if contact_phone:
            data["contactPhone"] = contact_phone

        logger.info(
            "Uploading chat export",
            relationship_id=relationship_id,
            filename=filename,
            size=len(content),
            source=source,
        )
        return await self._call(
            "POST",
            f"/relationships/{relationship_id}/import",
            "import_chat",
            data=data,
            files={"chatFile": (filename, content, content_type)},
        )

    async def get_import_status(self, conversation_id: str) -> dict:
        return await self._call(
            "GET", f"/imports/{conversation_id}/status", "get_import_status"
        )

    async def get_import_analysis(self, conversation_id: str) -> dict:
        return await self._call(
            "GET", f"/imports/{conversation_id}/analysis", "get_import_analysis"
        )

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    async def recalculate_metrics(self, relationship_id: str) -> dict:
        return await self._call(
            "POST", f"/relationships/{relationship_id}/recalculate-metrics", "recalculate_metrics"
        )

    async def analyze_topics(self, relationship_id: str) -> dict:
        return await self._call(
            "POST", f"/relationships/{relationship_id}/analyze-topics", "analyze_topics"
        )

    async def update_topic_distribution(self, relationship_id: str, topics: list[dict]) -> dict:
        return await self._call(
            "POST",
            f"/relationships/{relationship_id}/topics",
            "update_topic_distribution",
            json={"topics": topics},
        )

    async def has_conversations(self, relationship_id: str) -> bool:
        """True when the relationship already has conversations. Errors count as none."""
        try:
            data = await self._call(
                "GET", f"/relationships/{relationship_id}/conversations", "get_conversations"
            )
        except SoulSyncApiError as e:
            logger.warning(
                "Error checking conversations", relationship_id=relationship_id, error=str(e)
            )
            return False
        return isinstance(data, list) and len(data) > 0

    async def get_detailed_profile(self, relationship_id: str) -> dict:
        return await self._call(
            "GET", f"/relationships/{relationship_id}/detailed-profile", "get_detailed_profile"
        )

    async def analyze_relationship(self, relationship_id: str) -> dict:
        return await self._call(
            "POST", f"/relationships/{relationship_id}/analyze", "analyze_relationship"
        )

    async def ping(self) -> bool:
        """Backend reachability: any non-5xx answer counts."""
        try:
            response = await self._client.get("/")
            return response.status_code < 500
        except httpx.RequestError as e:
            logger.warning("SoulSync API unreachable", error=str(e))
            return False
