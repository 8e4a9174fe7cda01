"""Command-line interface for voice2text.

WHY: Operators run the tool on one media file at a time from a terminal.
The CLI wires the whole run together: configuration, authentication,
upload, indexing, download, remote cleanup and caption cleanup.

HOW: argparse takes a single positional path. The async pipeline runs
through asyncio.run(). Status lines go to stderr; progress lines rewrite
the current stderr line with a carriage return. Escape stops watching the
job (see core.keyboard).

RULES:
- Exactly one positional argument: the input media file
- Exit 1 when the argument is missing or the file does not exist
- Exit 1 on configuration, authentication, upload, processor lookup,
  download or REST errors
- Exit 0 when the remote job itself fails (the error is reported, and
  download and caption cleanup are skipped)
- Exit 130 on Ctrl+C
- Set VOICE2TEXT_LOG_LEVEL (e.g. DEBUG) to enable logging output
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import httpx

from voice2text.api.auth import AuthenticationFailed, authenticate
from voice2text.api.client import MediaServicesAPIError, MediaServicesClient, ProcessorNotFound
from voice2text.api.transfer import BlobTransferClient, DownloadFailed, UploadFailed
from voice2text.config import (
    POLL_INTERVAL_S,
    ConfigurationMissing,
    Settings,
    job_configuration_path,
    load_job_configuration,
    load_settings,
)
from voice2text.core.captions import process_vtt_file
from voice2text.core.download import download_asset_to_local
from voice2text.core.indexing import CancellationToken, run_indexing_job
from voice2text.core.keyboard import EscapeKeyWatcher
from voice2text.core.upload import upload_file

logger = logging.getLogger(__name__)

USAGE = "Usage: voice2text <filename>\n  filename = Path to file."

_FATAL_ERRORS = (
    ConfigurationMissing,
    AuthenticationFailed,
    UploadFailed,
    ProcessorNotFound,
    DownloadFailed,
    MediaServicesAPIError,
    httpx.HTTPError,
    OSError,
)


class _Console:
    """stderr writer that keeps carriage-return progress lines tidy."""

    def __init__(self, stream=None) -> None:  # noqa: ANN001
        self._stream = stream if stream is not None else sys.stderr
        self._open_progress = False

    def status(self, msg: str) -> None:
        if self._open_progress:
            self._stream.write("\n")
            self._open_progress = False
        print(msg, file=self._stream, flush=True)

    def progress(self, msg: str) -> None:
        self._stream.write("\r" + msg + "  ")
        self._stream.flush()
        self._open_progress = True

    def upload_progress(self, name: str, percent: float) -> None:
        self.progress("Uploading '{}' - Progress: {:.2f}%".format(name, percent))

    def download_progress(self, name: str, percent: float) -> None:
        self.progress("{} - {:.0f} % download progress.".format(name, percent))


async def process_file(
    input_path: Path,
    settings: Settings,
    configuration: str,
    console: Optional[_Console] = None,
    cancel_token: Optional[CancellationToken] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    poll_interval: float = POLL_INTERVAL_S,
) -> Optional[Path]:
    """Run one media file through the whole indexing workflow.

    WHY: Keeps the remote workflow separate from argument parsing and exit
    codes so it can be driven end to end against a fake service.

    HOW: Authenticates, uploads, runs the indexing job (which deletes the
    input asset), downloads the output asset next to the input, deletes
    the output asset and cleans the captions.

    RULES:
    - Returns None when the job failed remotely (already reported)
    - The output asset is deleted only after a successful download

    Returns:
        Path of the plain-text transcript, or None.
    """
    console = console or _Console()
    input_path = Path(input_path)

    credentials = await authenticate(
        settings.tenant_domain,
        settings.client_id,
        settings.client_secret,
        transport=transport,
    )

    async with MediaServicesClient(
        settings.rest_api_endpoint, credentials, transport=transport
    ) as client, BlobTransferClient(transport=transport) as transfer:
        console.status("Preparing to Upload '{}'".format(input_path))
        asset = await upload_file(
            client, transfer, input_path, on_progress=console.upload_progress
        )
        console.status("Done.")

        output_asset = await run_indexing_job(
            client,
            asset,
            configuration,
            cancel_token=cancel_token,
            on_status=console.status,
            on_progress=console.progress,
            poll_interval=poll_interval,
        )
        if output_asset is None:
            return None

        console.status("Downloading output...")
        await download_asset_to_local(
            client,
            transfer,
            output_asset,
            input_path.parent,
            on_status=console.status,
            on_progress=console.download_progress,
        )
        await client.cleanup_asset(output_asset)

    transcript = process_vtt_file(input_path)
    if transcript is not None:
        console.status("Transcript: {}".format(transcript))
    console.status("Done.")
    return transcript


async def _run_pipeline(args: argparse.Namespace) -> int:
    """Validate the input, load configuration and run process_file()."""
    input_path = Path(args.input_file).resolve()
    if not input_path.is_file():
        print("File {} does not exist.".format(input_path), file=sys.stderr)
        return 1

    console = _Console()
    try:
        settings = load_settings()
        console.status("Reading Configuration File {}".format(job_configuration_path(input_path)))
        configuration = load_job_configuration(input_path)

        token = CancellationToken()
        with EscapeKeyWatcher(token) as watcher:
            if watcher.active:
                console.status("Press Esc to stop watching the job.")
            await process_file(input_path, settings, configuration, console, token)
    except _FATAL_ERRORS as e:
        logger.debug("Fatal error", exc_info=True)
        console.status("Error: {}".format(e))
        return 1
    return 0


def _configure_logging() -> None:
    level = os.getenv("VOICE2TEXT_LOG_LEVEL", "").strip().upper()
    if level:
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(name)s %(levelname)s %(message)s",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voice2text",
        description="Transcribe an audio/video file with Azure Media Indexer 2 and "
                    "write a plain-text transcript next to it. The processor "
                    "configuration is read from config.json in the file's directory.",
    )
    parser.add_argument(
        "input_file",
        nargs="?",
        help="Path to the audio or video file to transcribe.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``voice2text`` and ``python -m voice2text``.

    argv=None means use sys.argv; an explicit list is for tests.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.input_file:
        print(USAGE, file=sys.stderr)
        sys.exit(1)

    _configure_logging()
    try:
        code = asyncio.run(_run_pipeline(args))
    except KeyboardInterrupt:
        print("\nCancelled by user.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
