"""Downloader: fetch every file of the job's output asset.

WHY: The indexer writes its results (the WebVTT captions plus keyword
and TTML side files) into an output asset. All of them land next to the
input media so the caption cleaner can find the .vtt by name.

HOW: Grants a read-only SAS locator valid for DOWNLOAD_POLICY_DAYS, lists
the asset's files, and hands one DownloadItem per file to
BlobTransferClient.download_many(), which runs them concurrently and
returns only when all are done. The locator and its policy are removed
afterwards on a best-effort basis.

RULES:
- Files are written to destination/<file name>
- Each file reports its own progress
- Any single failure surfaces as DownloadFailed; there is no partial result
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import httpx

from voice2text.api.client import MediaServicesAPIError, MediaServicesClient
from voice2text.api.models import AccessPermissions, RemoteAsset
from voice2text.api.transfer import BlobTransferClient, DownloadFailed, DownloadItem
from voice2text.config import DOWNLOAD_POLICY_DAYS

logger = logging.getLogger(__name__)

_DOWNLOAD_POLICY_NAME = "File Download Policy"


async def download_asset_to_local(
    client: MediaServicesClient,
    transfer: BlobTransferClient,
    asset: RemoteAsset,
    destination: Path,
    on_status: Optional[Callable[[str], None]] = None,
    on_progress: Optional[Callable[[str, float], None]] = None,
) -> List[Path]:
    """Download all files of ``asset`` into ``destination``.

    Args:
        client: Media Services REST client.
        transfer: Blob transfer client doing the parallel downloads.
        asset: Output asset of the indexing job.
        destination: Local directory (normally the input file's directory).
        on_status: Receives one "File download path:" line per file.
        on_progress: Receives (file name, percent) as data arrives.

    Returns:
        Local paths of the downloaded files.

    Raises:
        DownloadFailed: If the locator cannot be created or any file fails.
    """
    destination = Path(destination)
    policy = None
    locator = None
    try:
        policy = await client.create_access_policy(
            _DOWNLOAD_POLICY_NAME, timedelta(days=DOWNLOAD_POLICY_DAYS), AccessPermissions.READ
        )
        locator = await client.create_locator(asset, policy)
        files = await client.list_asset_files(asset)

        items = []
        for asset_file in files:
            local_path = destination / asset_file.name
            if on_status:
                on_status("File download path:  {}".format(local_path.resolve()))
            items.append(
                DownloadItem(
                    url=locator.url_for(asset_file.name),
                    destination=local_path,
                    size=asset_file.content_file_size,
                    on_progress=_bind_progress(asset_file.name, on_progress),
                )
            )

        logger.info("Downloading %d file(s) from asset %s", len(items), asset.id)
        return await transfer.download_many(items)
    except (MediaServicesAPIError, httpx.HTTPError) as exc:
        raise DownloadFailed("Could not download asset {}: {}".format(asset.name, exc)) from exc
    finally:
        await client.cleanup_access(locator, policy)


def _bind_progress(
    name: str,
    on_progress: Optional[Callable[[str, float], None]],
) -> Optional[Callable[[float], None]]:
    if on_progress is None:
        return None

    def report(percent: float) -> None:
        on_progress(name, percent)

    return report
