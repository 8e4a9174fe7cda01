"""Async REST client for Azure Media Services (v2 OData API).

WHY: The indexer workflow touches assets, files, access policies,
locators, media processors and jobs. This module wraps every REST call
the tool makes behind one client class so the orchestration code never
builds URLs or parses OData envelopes itself.

HOW: Uses httpx.AsyncClient with the bearer token from the Authenticator
and the OData v3 headers Media Services requires. The client is an async
context manager and is the single context object handed to the uploader,
orchestrator and downloader.

RULES:
- Always use as: async with MediaServicesClient(endpoint, credentials) as client:
- Requests and responses use application/json;odata=verbose
- Non-2xx responses raise MediaServicesAPIError
- Entity ids are quoted inside OData keys: Assets('nb:cid:UUID:...')
- cleanup_* helpers are best-effort: failures are logged, never raised
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import quote

import httpx

from voice2text.api.auth import TokenCredentials
from voice2text.api.models import (
    AccessLocator,
    AccessPermissions,
    AccessPolicy,
    AssetCreationOptions,
    AssetFile,
    Job,
    LocatorType,
    MediaProcessor,
    RemoteAsset,
    Task,
)

logger = logging.getLogger(__name__)

_API_VERSION = "2.19"
_ODATA_JSON = "application/json;odata=verbose"

# SAS locators start this far in the past to tolerate storage clock skew.
_LOCATOR_START_SKEW = timedelta(minutes=5)


class MediaServicesAPIError(Exception):
    """Raised when the Media Services REST API returns an error response."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Media Services API error {status_code}: {message}")


class ProcessorNotFound(LookupError):
    """Raised when no media processor matches the requested name."""


def _odata_key(entity_id: str) -> str:
    return "('{}')".format(quote(entity_id, safe=""))


def _unwrap(data: Any) -> Any:
    """Strip the OData verbose envelope ({"d": ...} / {"value": [...]})."""
    if isinstance(data, dict):
        if "d" in data:
            data = data["d"]
        if isinstance(data, dict):
            if "results" in data:
                return data["results"]
            if "value" in data and "Id" not in data:
                return data["value"]
    return data


class MediaServicesClient:
    """Async client for the Media Services REST endpoint of one account.

    WHY: One explicit object per run owns the HTTP connection pool and
    the auth header, and is passed to every workflow step.

    HOW: Wraps httpx.AsyncClient with the account's REST endpoint as base
    URL. Each entity operation is a small async method returning the
    dataclasses from api.models.

    RULES:
    - endpoint is the AMSRestAPIEndpoint setting (trailing slash optional)
    - transport is only for tests
    """

    def __init__(
        self,
        endpoint: str,
        credentials: TokenCredentials,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._credentials = credentials
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> MediaServicesClient:
        self._client = httpx.AsyncClient(
            base_url=self._endpoint,
            headers={
                "Authorization": self._credentials.authorization_header,
                "Accept": _ODATA_JSON,
                "Content-Type": _ODATA_JSON,
                "DataServiceVersion": "3.0",
                "MaxDataServiceVersion": "3.0",
                "x-ms-version": _API_VERSION,
            },
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "MediaServicesClient must be used as an async context manager: "
                "async with MediaServicesClient(...) as client: ..."
            )
        return self._client

    def entity_uri(self, entity_set: str, entity_id: str) -> str:
        """Absolute URI of an entity, as used in OData __metadata links."""
        return "{}/{}{}".format(self._endpoint, entity_set, _odata_key(entity_id))

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = self._ensure_client()
        resp = await client.request(method, path, **kwargs)
        if resp.status_code >= 300:
            raise MediaServicesAPIError(resp.status_code, resp.text)
        if resp.status_code == 204 or not resp.content:
            return None
        return _unwrap(resp.json())

    # ------------------------------------------------------------------
    # Assets and files
    # ------------------------------------------------------------------

    async def create_asset(
        self,
        name: str,
        options: AssetCreationOptions = AssetCreationOptions.NONE,
    ) -> RemoteAsset:
        data = await self._request("POST", "/Assets", json={"Name": name, "Options": int(options)})
        asset = RemoteAsset.from_dict(data)
        logger.info("Created asset %s (%s)", asset.id, asset.name)
        return asset

    async def delete_asset(self, asset: RemoteAsset) -> None:
        await self._request("DELETE", "/Assets" + _odata_key(asset.id))
        logger.info("Deleted asset %s (%s)", asset.id, asset.name)

    async def create_file_info(self, asset: RemoteAsset) -> None:
        """Ask the service to register blobs already uploaded to the asset container."""
        await self._request(
            "GET",
            "/CreateFileInfos",
            params={"assetid": "'{}'".format(asset.id)},
        )

    async def list_asset_files(self, asset: RemoteAsset) -> list[AssetFile]:
        data = await self._request("GET", "/Assets{}/Files".format(_odata_key(asset.id)))
        return [AssetFile.from_dict(item) for item in data or []]

    # ------------------------------------------------------------------
    # Media processors
    # ------------------------------------------------------------------

    async def list_media_processors(self, name: str | None = None) -> list[MediaProcessor]:
        params = {}
        if name:
            params["$filter"] = "Name eq '{}'".format(name.replace("'", "''"))
        data = await self._request("GET", "/MediaProcessors", params=params)
        return [MediaProcessor.from_dict(item) for item in data or []]

    async def get_latest_media_processor(self, name: str) -> MediaProcessor:
        """Return the highest-versioned processor called ``name``.

        Versions are compared as integer tuples, so "2.10" beats "2.9".

        Raises:
            ProcessorNotFound: If the account offers no processor by that name.
        """
        candidates = [p for p in await self.list_media_processors(name) if p.name == name]
        if not candidates:
            raise ProcessorNotFound("Unknown media processor: {}".format(name))
        processor = max(candidates, key=lambda p: p.version_tuple)
        logger.info("Using media processor %s version %s", processor.name, processor.version)
        return processor

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def create_job(
        self,
        name: str,
        input_asset: RemoteAsset,
        processor: MediaProcessor,
        configuration: str,
        task_name: str,
        output_asset_name: str,
    ) -> Job:
        """Create and submit a single-task job.

        Media Services starts a job as soon as it is created, so this is
        also the submit step. The task reads JobInputAsset(0) and writes a
        new output asset named ``output_asset_name``.
        """
        task_body = (
            '<?xml version="1.0" encoding="utf-8"?><taskBody>'
            "<inputAsset>JobInputAsset(0)</inputAsset>"
            '<outputAsset assetCreationOptions="0" assetName="{}">JobOutputAsset(0)</outputAsset>'
            "</taskBody>"
        ).format(output_asset_name)
        body = {
            "Name": name,
            "InputMediaAssets": [
                {"__metadata": {"uri": self.entity_uri("Assets", input_asset.id)}},
            ],
            "Tasks": [
                {
                    "Name": task_name,
                    "Configuration": configuration,
                    "MediaProcessorId": processor.id,
                    "TaskBody": task_body,
                },
            ],
        }
        data = await self._request("POST", "/Jobs", json=body)
        job = Job.from_dict(data)
        logger.info("Submitted job %s (%s)", job.id, job.name)
        return job

    async def get_job_tasks(self, job_id: str) -> list[Task]:
        data = await self._request("GET", "/Jobs{}/Tasks".format(_odata_key(job_id)))
        return [Task.from_dict(item) for item in data or []]

    async def get_job(self, job_id: str) -> Job:
        """Fetch the job's state together with its tasks."""
        data = await self._request("GET", "/Jobs" + _odata_key(job_id))
        job = Job.from_dict(data)
        job.tasks = await self.get_job_tasks(job_id)
        return job

    async def get_output_assets(self, job_id: str) -> list[RemoteAsset]:
        data = await self._request("GET", "/Jobs{}/OutputMediaAssets".format(_odata_key(job_id)))
        return [RemoteAsset.from_dict(item) for item in data or []]

    async def cancel_job(self, job_id: str) -> None:
        await self._request("GET", "/CancelJob", params={"jobid": "'{}'".format(job_id)})
        logger.info("Requested cancellation of job %s", job_id)

    # ------------------------------------------------------------------
    # Access policies and locators
    # ------------------------------------------------------------------

    async def create_access_policy(
        self,
        name: str,
        duration: timedelta,
        permissions: AccessPermissions,
    ) -> AccessPolicy:
        body = {
            "Name": name,
            "DurationInMinutes": duration.total_seconds() / 60,
            "Permissions": int(permissions),
        }
        data = await self._request("POST", "/AccessPolicies", json=body)
        return AccessPolicy.from_dict(data)

    async def delete_access_policy(self, policy: AccessPolicy) -> None:
        await self._request("DELETE", "/AccessPolicies" + _odata_key(policy.id))

    async def create_locator(
        self,
        asset: RemoteAsset,
        policy: AccessPolicy,
        locator_type: LocatorType = LocatorType.SAS,
    ) -> AccessLocator:
        start = datetime.now(timezone.utc) - _LOCATOR_START_SKEW
        body = {
            "AccessPolicyId": policy.id,
            "AssetId": asset.id,
            "StartTime": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "Type": int(locator_type),
        }
        data = await self._request("POST", "/Locators", json=body)
        return AccessLocator.from_dict(data)

    async def delete_locator(self, locator: AccessLocator) -> None:
        await self._request("DELETE", "/Locators" + _odata_key(locator.id))

    # ------------------------------------------------------------------
    # Best-effort cleanup
    # ------------------------------------------------------------------

    async def cleanup_asset(self, asset: RemoteAsset) -> bool:
        """Delete an asset, logging instead of raising on failure.

        Returns:
            True if the asset was deleted.
        """
        try:
            await self.delete_asset(asset)
        except (MediaServicesAPIError, httpx.HTTPError):
            logger.warning("Failed to delete asset %s (%s)", asset.id, asset.name, exc_info=True)
            return False
        return True

    async def cleanup_access(self, locator: AccessLocator | None, policy: AccessPolicy | None) -> None:
        """Delete a locator and its policy, ignoring failures."""
        try:
            if locator is not None:
                await self.delete_locator(locator)
            if policy is not None:
                await self.delete_access_policy(policy)
        except (MediaServicesAPIError, httpx.HTTPError):
            logger.warning("Failed to delete locator/access policy", exc_info=True)
