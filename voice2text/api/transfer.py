"""Parallel blob transfers against SAS URLs.

WHY: Asset content lives in Azure blob storage, reached through SAS URLs
from an access locator rather than through the REST API. Uploads must
report progress while they stream. Downloads must fetch every output file
of an asset at once, and large files should come down as parallel ranged
reads.

HOW: BlobTransferClient owns one httpx.AsyncClient (no auth headers, the
SAS query string authenticates). Uploads are block blobs: one Put Block
per chunk, then Put Block List. Downloads use Range requests fanned out
under a per-file semaphore. download_many() gathers all files behind a
barrier bounded by a second semaphore.

RULES:
- number_of_concurrent_transfers bounds how many files move at once
- parallel_transfer_thread_count bounds ranged requests per file
- Progress callbacks receive a percentage in [0, 100]
- Upload failures raise UploadFailed, download failures DownloadFailed
- download_many() returns only when every file finished; the first
  failure is what surfaces, and the transfers still running are cancelled
- A failed or cancelled download leaves no partial file behind
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar
from urllib.parse import quote

import httpx

from voice2text.config import (
    NUMBER_OF_CONCURRENT_TRANSFERS,
    PARALLEL_TRANSFER_THREAD_COUNT,
    TRANSFER_BLOCK_SIZE,
)

logger = logging.getLogger(__name__)

_STORAGE_VERSION = "2017-04-17"

T = TypeVar("T")


class UploadFailed(Exception):
    """Raised when the input media cannot be pushed to storage."""


class DownloadFailed(Exception):
    """Raised when any output file cannot be fetched."""


@dataclass
class DownloadItem:
    """One blob to fetch: SAS URL, local destination and expected size."""

    url: str
    destination: Path
    size: int = 0
    on_progress: Callable[[float], None] | None = None


def _block_id(index: int) -> str:
    # Block ids must all have the same length before base64 encoding.
    return base64.b64encode("block-{:08d}".format(index).encode("ascii")).decode("ascii")


def _with_query(url: str, **params: str) -> str:
    extra = "&".join("{}={}".format(k, v) for k, v in params.items())
    return url + ("&" if "?" in url else "?") + extra


class BlobTransferClient:
    """Blob upload/download engine with bounded parallelism."""

    def __init__(
        self,
        number_of_concurrent_transfers: int = NUMBER_OF_CONCURRENT_TRANSFERS,
        parallel_transfer_thread_count: int = PARALLEL_TRANSFER_THREAD_COUNT,
        block_size: int = TRANSFER_BLOCK_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if number_of_concurrent_transfers < 1 or parallel_transfer_thread_count < 1:
            raise ValueError("Transfer concurrency limits must be at least 1")
        if block_size < 1:
            raise ValueError("block_size must be positive")
        self.number_of_concurrent_transfers = number_of_concurrent_transfers
        self.parallel_transfer_thread_count = parallel_transfer_thread_count
        self.block_size = block_size
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BlobTransferClient:
        self._client = httpx.AsyncClient(
            headers={"x-ms-version": _STORAGE_VERSION},
            timeout=httpx.Timeout(600.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "BlobTransferClient must be used as an async context manager: "
                "async with BlobTransferClient() as transfer: ..."
            )
        return self._client

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        url: str,
        path: Path,
        on_progress: Callable[[float], None] | None = None,
    ) -> None:
        """Upload a local file as a block blob, reporting progress per block.

        Raises:
            UploadFailed: On I/O errors or any storage error response.
        """
        client = self._ensure_client()
        path = Path(path)
        block_ids: list[str] = []

        try:
            total = path.stat().st_size
            sent = 0
            with open(path, "rb") as f:
                while True:
                    chunk = await asyncio.to_thread(f.read, self.block_size)
                    if not chunk:
                        break
                    block_id = _block_id(len(block_ids))
                    resp = await client.put(
                        _with_query(url, comp="block", blockid=quote(block_id, safe="")),
                        content=chunk,
                    )
                    _raise_for_upload(resp, path)
                    block_ids.append(block_id)
                    sent += len(chunk)
                    if on_progress:
                        on_progress(sent * 100.0 / total)

            block_list = "".join("<Latest>{}</Latest>".format(b) for b in block_ids)
            resp = await client.put(
                _with_query(url, comp="blocklist"),
                content='<?xml version="1.0" encoding="utf-8"?><BlockList>{}</BlockList>'.format(
                    block_list
                ).encode("utf-8"),
                headers={"Content-Type": "application/xml"},
            )
            _raise_for_upload(resp, path)
        except OSError as exc:
            raise UploadFailed("Could not read {}: {}".format(path, exc)) from exc
        except httpx.HTTPError as exc:
            raise UploadFailed("Upload of {} failed: {}".format(path.name, exc)) from exc

        if not block_ids and on_progress:
            on_progress(100.0)
        logger.info("Uploaded %s in %d block(s)", path.name, len(block_ids))

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download(self, item: DownloadItem) -> Path:
        """Download one blob, splitting it into parallel ranged reads.

        A failed or cancelled download leaves no file at ``item.destination``.

        Raises:
            DownloadFailed: On any storage error or local I/O error.
        """
        try:
            await self._fetch(item)
        except BaseException:
            _discard_partial(item.destination)
            raise
        logger.info("Downloaded %s", item.destination)
        return item.destination

    async def _fetch(self, item: DownloadItem) -> None:
        try:
            if item.size > self.block_size:
                await self._download_ranges(item)
            else:
                await self._download_whole(item)
        except OSError as exc:
            raise DownloadFailed("Could not write {}: {}".format(item.destination, exc)) from exc
        except httpx.HTTPError as exc:
            raise DownloadFailed(
                "Download of {} failed: {}".format(item.destination.name, exc)
            ) from exc

    async def _download_whole(self, item: DownloadItem) -> None:
        client = self._ensure_client()
        resp = await client.get(item.url)
        _raise_for_download(resp, item)
        item.destination.write_bytes(resp.content)
        if item.on_progress:
            item.on_progress(100.0)

    async def _download_ranges(self, item: DownloadItem) -> None:
        client = self._ensure_client()
        semaphore = asyncio.Semaphore(self.parallel_transfer_thread_count)
        ranges = [
            (start, min(start + self.block_size, item.size) - 1)
            for start in range(0, item.size, self.block_size)
        ]
        received = 0

        with open(item.destination, "wb") as f:
            f.truncate(item.size)

            async def fetch(start: int, end: int) -> None:
                nonlocal received
                async with semaphore:
                    resp = await client.get(
                        item.url, headers={"Range": "bytes={}-{}".format(start, end)}
                    )
                _raise_for_download(resp, item)
                f.seek(start)
                f.write(resp.content)
                received += len(resp.content)
                if item.on_progress:
                    item.on_progress(min(received * 100.0 / item.size, 100.0))

            await _gather_or_cancel(fetch(start, end) for start, end in ranges)

    async def download_many(self, items: list[DownloadItem]) -> list[Path]:
        """Download all items concurrently and wait for every one of them.

        Returns:
            Destination paths in the order of ``items``.

        Raises:
            DownloadFailed: The first failure among the transfers. The
                remaining transfers are cancelled and their files removed.
        """
        semaphore = asyncio.Semaphore(self.number_of_concurrent_transfers)

        async def bounded(item: DownloadItem) -> Path:
            async with semaphore:
                return await self.download(item)

        return await _gather_or_cancel(bounded(item) for item in items)


def _raise_for_upload(resp: httpx.Response, path: Path) -> None:
    if resp.status_code >= 300:
        raise UploadFailed(
            "Storage rejected upload of {} ({}): {}".format(path.name, resp.status_code, resp.text)
        )


def _raise_for_download(resp: httpx.Response, item: DownloadItem) -> None:
    if resp.status_code >= 300:
        raise DownloadFailed(
            "Storage rejected download of {} ({}): {}".format(
                item.destination.name, resp.status_code, resp.text
            )
        )


async def _gather_or_cancel(coros: Iterable[Awaitable[T]]) -> list[T]:
    """Await all coroutines; on the first failure cancel and drain the rest."""
    tasks = [asyncio.ensure_future(c) for c in coros]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _discard_partial(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Could not remove partial download %s", path, exc_info=True)
