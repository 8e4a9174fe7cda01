"""Job Orchestrator: run the speech-indexing job for an uploaded asset.

WHY: Indexing is the long-running part of a run. The orchestrator turns
an input asset plus the processor configuration into an output asset,
keeps the operator informed while the job runs, and reports remote task
failures without crashing the CLI.

HOW: Resolves the newest version of the named processor, creates a
single-task job (creating a Media Services job also submits it) and then
polls the job. Every poll renders a progress line; whenever the observed
state changes a human-readable status line is emitted. The loop ends on
a terminal state or when the cancellation token is set.

RULES:
- Processor lookup failures (ProcessorNotFound) are raised before submission
- A job in ERROR is reported as "Error: <code>. <message>" from the first
  task's first error detail, and None is returned (nothing is raised)
- Cancellation only stops watching unless cancel_remote is True
- A cancelled job, or one without an output asset, is reported and
  None is returned
- The input asset is deleted exactly once, whatever the outcome
- There is no overall polling timeout
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Optional

from voice2text.api.client import MediaServicesClient
from voice2text.api.models import ErrorDetail, Job, JobState, RemoteAsset
from voice2text.config import (
    CANCEL_REMOTE_JOB_ON_ESCAPE,
    JOB_NAME,
    MEDIA_PROCESSOR_NAME,
    OUTPUT_ASSET_NAME,
    POLL_INTERVAL_S,
    TASK_NAME,
)

logger = logging.getLogger(__name__)

_STATE_MESSAGES = {
    JobState.FINISHED: "Job is Done.",
    JobState.CANCELING: "Job is Canceling...",
    JobState.QUEUED: "Job is Queued...",
    JobState.SCHEDULED: "Job is Scheduled.",
    JobState.PROCESSING: "Processing Job. Please wait...",
    JobState.CANCELED: "Job is CANCELED.",
}


class JobExecutionError(Exception):
    """The remote processing task failed.

    Built from the first error detail of the first task. The orchestrator
    reports it rather than raising it.
    """

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__("Error: {}. {}".format(code, message))

    @classmethod
    def from_job(cls, job: Job) -> JobExecutionError:
        detail = ErrorDetail(code="", message="Job failed without error details")
        if job.tasks and job.tasks[0].error_details:
            detail = job.tasks[0].error_details[0]
        return cls(detail.code, detail.message)


class CancellationToken:
    """Thread-safe flag the poll loop checks once per iteration."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def describe_state(state: JobState) -> Optional[str]:
    """Human-readable line for a job state transition, or None for ERROR."""
    return _STATE_MESSAGES.get(state)


async def watch_job(
    client: MediaServicesClient,
    job_id: str,
    cancel_token: Optional[CancellationToken] = None,
    cancel_remote: bool = False,
    on_status: Optional[Callable[[str], None]] = None,
    on_progress: Optional[Callable[[str], None]] = None,
    poll_interval: float = POLL_INTERVAL_S,
) -> Job:
    """Poll a job until it reaches a terminal state or watching is cancelled.

    WHY: All decisions after submission depend on the job's final state,
    so state changes are observed here instead of through a callback.

    HOW: Fetches the job (with tasks) every ``poll_interval`` seconds.
    Emits describe_state() on each transition and a progress line on
    every iteration.

    RULES:
    - Always fetches the job at least once, even with a pre-cancelled token
    - With cancel_remote, a CancelJob request is sent on cancellation and
      the job is fetched once more before returning

    Returns:
        The last observed Job.
    """
    last_state: Optional[JobState] = None

    while True:
        job = await client.get_job(job_id)

        if job.state != last_state:
            logger.info("Job %s is %s", job_id, job.state.name)
            message = describe_state(job.state)
            if message and on_status:
                on_status(message)
            last_state = job.state

        if on_progress:
            on_progress(
                "Processing - {:.0f}% {}".format(job.overall_progress, job.state.name.title())
            )

        if job.state.is_terminal:
            return job

        if cancel_token is not None and cancel_token.cancelled:
            logger.info("Stopped watching job %s in state %s", job_id, job.state.name)
            if cancel_remote:
                await client.cancel_job(job_id)
                job = await client.get_job(job_id)
            return job

        await asyncio.sleep(poll_interval)


async def run_indexing_job(
    client: MediaServicesClient,
    asset: RemoteAsset,
    configuration: str,
    processor_name: str = MEDIA_PROCESSOR_NAME,
    cancel_token: Optional[CancellationToken] = None,
    cancel_remote: bool = CANCEL_REMOTE_JOB_ON_ESCAPE,
    on_status: Optional[Callable[[str], None]] = None,
    on_progress: Optional[Callable[[str], None]] = None,
    poll_interval: float = POLL_INTERVAL_S,
) -> Optional[RemoteAsset]:
    """Index ``asset`` and return the job's first output asset.

    Args:
        client: Media Services REST client.
        asset: Uploaded input asset. It is deleted before this returns.
        configuration: Processor configuration text, sent unmodified.
        processor_name: Name of the media processor to use.
        cancel_token: Checked on every poll; set by the escape-key watcher.
        cancel_remote: Also cancel the remote job when the token is set.
        on_status: Receives status lines.
        on_progress: Receives the rewritable progress line.
        poll_interval: Seconds between polls.

    Returns:
        The first output asset, or None when the job ended in ERROR, was
        cancelled remotely, or produced no output asset.

    Raises:
        ProcessorNotFound: No processor matches ``processor_name``.
    """

    def status(msg: str) -> None:
        if on_status:
            on_status(msg)

    try:
        processor = await client.get_latest_media_processor(processor_name)
        job = await client.create_job(
            JOB_NAME, asset, processor, configuration, TASK_NAME, OUTPUT_ASSET_NAME
        )
        status("Submitting Speech Recognition Job.")

        job = await watch_job(
            client,
            job.id,
            cancel_token=cancel_token,
            cancel_remote=cancel_remote,
            on_status=on_status,
            on_progress=on_progress,
            poll_interval=poll_interval,
        )

        if job.state == JobState.ERROR:
            error = JobExecutionError.from_job(job)
            logger.error("Job %s failed: %s %s", job.id, error.code, error.message)
            status(str(error))
            return None

        if job.state in (JobState.CANCELING, JobState.CANCELED):
            status("Job was cancelled; no output to download.")
            return None

        outputs = job.output_assets or await client.get_output_assets(job.id)
        if not outputs:
            status("Job finished without an output asset.")
            return None
        return outputs[0]
    finally:
        status("Cleaning Input Asset: {}".format(asset.name))
        await client.cleanup_asset(asset)
