"""Uploader: push the local media file into a new input asset.

WHY: The indexing job can only read media that already lives in a Media
Services asset. The upload is the first remote step of every run and
nothing can proceed without it.

HOW: Creates an empty asset named after the file, grants a short-lived
write SAS locator on it, streams the file as a block blob through the
BlobTransferClient, asks the service to register the file, then revokes
the write locator.

RULES:
- Only AssetCreationOptions.NONE is used by the CLI
- Progress is reported per uploaded block
- The write locator/policy are removed whether or not the upload worked
- Any failure becomes UploadFailed; the half-created asset is deleted
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import httpx

from voice2text.api.client import MediaServicesAPIError, MediaServicesClient
from voice2text.api.models import AccessPermissions, AssetCreationOptions, RemoteAsset
from voice2text.api.transfer import BlobTransferClient, UploadFailed

logger = logging.getLogger(__name__)

_UPLOAD_POLICY_NAME = "File Upload Policy"
_UPLOAD_POLICY_DURATION = timedelta(hours=8)


async def upload_file(
    client: MediaServicesClient,
    transfer: BlobTransferClient,
    path: Path,
    options: AssetCreationOptions = AssetCreationOptions.NONE,
    on_progress: Callable[[str, float], None] | None = None,
) -> RemoteAsset:
    """Create an asset from a local file and return its handle.

    Args:
        client: Media Services REST client.
        transfer: Blob transfer client used for the block upload.
        path: Local media file.
        options: Asset creation options.
        on_progress: Called with (file name, percent) after each block.

    Returns:
        The uploaded RemoteAsset.

    Raises:
        UploadFailed: On any REST, storage or local I/O failure.
    """
    path = Path(path)
    try:
        asset = await client.create_asset(path.name, options)
    except (MediaServicesAPIError, httpx.HTTPError) as exc:
        raise UploadFailed("Could not create asset for {}: {}".format(path.name, exc)) from exc

    def report(percent: float) -> None:
        if on_progress:
            on_progress(path.name, percent)

    policy = None
    locator = None
    try:
        policy = await client.create_access_policy(
            _UPLOAD_POLICY_NAME, _UPLOAD_POLICY_DURATION, AccessPermissions.WRITE
        )
        locator = await client.create_locator(asset, policy)
        await transfer.upload(locator.url_for(path.name), path, on_progress=report)
        await client.create_file_info(asset)
    except (UploadFailed, MediaServicesAPIError, httpx.HTTPError) as exc:
        await client.cleanup_access(locator, policy)
        await client.cleanup_asset(asset)
        if isinstance(exc, UploadFailed):
            raise
        raise UploadFailed("Upload of {} failed: {}".format(path.name, exc)) from exc

    await client.cleanup_access(locator, policy)
    logger.info("Input asset %s ready", asset.id)
    return asset
