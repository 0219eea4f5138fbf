"""
TrueNAS Management API Client

Fetches Cloud Sync tasks and credentials, and raises one-shot alerts.

Caveat: TLS certificate verification is off unless verify_tls is set,
because TrueNAS appliances usually serve a self-signed certificate. Anyone
able to intercept traffic to the appliance could read the API key and the
task secrets returned by these calls.
"""

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import ConfigError, NotFoundError, UpstreamError
from .main import Credential, SyncTask, ValidatorConfig

logger = logging.getLogger(__name__)


def build_auth_header(config: ValidatorConfig) -> str:
    """Bearer token when an API key is configured, otherwise HTTP Basic"""
    if config.api_key:
        return f"Bearer {config.api_key}"
    if config.user and config.password:
        raw = f"{config.user}:{config.password}".encode("utf-8")
        return f"Basic {base64.b64encode(raw).decode('ascii')}"
    raise ConfigError("No API key or username/password configured")


def _parse(record_type, record: Any, endpoint: str):
    """Build a record, turning a malformed payload into UpstreamError"""
    try:
        return record_type.from_api(record)
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise UpstreamError(
            f"Malformed {record_type.__name__} record from {endpoint}: {type(e).__name__}: {e}"
        ) from e


class TrueNASClient:
    """
    Async client for the TrueNAS v2.0 REST API.

    Usage:
        async with TrueNASClient(config) as client:
            task = await client.get_task(3)
            credential = await client.get_credential(task.credential_id)
    """

    def __init__(
        self,
        config: ValidatorConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "TrueNASClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is not None:
            return
        if not self.config.verify_tls:
            logger.debug("TLS certificate verification disabled for TrueNAS API")
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={
                "Authorization": build_auth_header(self.config),
                "Accept": "application/json",
            },
            timeout=self.config.http_timeout_s,
            verify=self.config.verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # Cloud Sync
    # =========================================================================

    async def list_tasks(self) -> List[SyncTask]:
        """All Cloud Sync tasks"""
        data = await self._request("GET", "/cloudsync")
        if not isinstance(data, list):
            raise UpstreamError("Unexpected response for /cloudsync: expected a list")
        return [_parse(SyncTask, record, "/cloudsync") for record in data]

    async def list_encrypted_task_ids(self) -> List[int]:
        """Ids of tasks with encryption enabled; empty means nothing to validate"""
        tasks = await self.list_tasks()
        return [t.id for t in tasks if t.encryption]

    async def get_task(self, task_id: int) -> SyncTask:
        data = await self._request("GET", f"/cloudsync/id/{task_id}", not_found=f"Task ID {task_id}")
        if not data:
            raise NotFoundError(f"Task ID {task_id} not found", status_code=404)
        return _parse(SyncTask, data, f"/cloudsync/id/{task_id}")

    async def get_credential(self, credential_id: int) -> Credential:
        data = await self._request(
            "GET",
            f"/cloudsync/credentials/id/{credential_id}",
            not_found=f"Credential ID {credential_id}",
        )
        if not data:
            raise NotFoundError(f"Credential ID {credential_id} not found", status_code=404)
        return _parse(Credential, data, f"/cloudsync/credentials/id/{credential_id}")

    # =========================================================================
    # Alerts
    # =========================================================================

    async def create_alert(self, name: str, level: str, message: str) -> Any:
        """Raise a one-shot alert in the TrueNAS alert subsystem"""
        payload = {"name": name, "level": level, "message": message}
        return await self._request("POST", "/alert/oneshot_create", json=payload)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _request(
        self,
        method: str,
        endpoint: str,
        not_found: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if self._client is None:
            await self.open()

        try:
            response = await self._client.request(method, endpoint, json=json)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{method} {endpoint} failed: {e}") from e

        if response.status_code == 404 and not_found:
            raise NotFoundError(f"{not_found} not found", status_code=404)
        if response.status_code in (401, 403):
            raise UpstreamError(
                f"{method} {endpoint} rejected: authentication failed ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.is_success:
            raise UpstreamError(
                f"{method} {endpoint} returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {endpoint}: {e}") from e
