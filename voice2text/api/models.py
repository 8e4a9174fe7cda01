"""Azure Media Services REST entities as typed dataclasses.

WHY: The Media Services v2 REST API returns OData JSON for assets, files,
processors, jobs, tasks and locators. Typed dataclasses make the handful
of fields this tool relies on explicit and keep parsing in one place.

HOW: Each dataclass maps to one OData entity type. ``from_dict`` factory
methods accept either the minimal-metadata shape (plain object) or the
verbose shape where nested collections are wrapped in ``{"results": [...]}``.

RULES:
- JobState values match the wire enumeration (0 = Queued ... 6 = Canceling)
- MediaProcessor versions compare numerically ("2.10" > "2.9")
- ErrorDetails / Tasks may arrive wrapped in "results" or as plain lists
- Unknown fields are ignored
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote


class JobState(enum.IntEnum):
    """Lifecycle states of a Media Services job."""

    QUEUED = 0
    SCHEDULED = 1
    PROCESSING = 2
    FINISHED = 3
    ERROR = 4
    CANCELED = 5
    CANCELING = 6

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.FINISHED, JobState.ERROR, JobState.CANCELED)


class AssetCreationOptions(enum.IntEnum):
    NONE = 0
    STORAGE_ENCRYPTED = 1


class AccessPermissions(enum.IntFlag):
    NONE = 0
    READ = 1
    WRITE = 2
    DELETE = 4
    LIST = 8


class LocatorType(enum.IntEnum):
    NONE = 0
    SAS = 1
    ON_DEMAND_ORIGIN = 2


def _results(value: Any) -> list:
    """Unwrap an OData collection that may be nested under "results"."""
    if value is None:
        return []
    if isinstance(value, dict):
        return list(value.get("results", []))
    return list(value)


def parse_version(version: str) -> tuple[int, ...]:
    """Turn a dotted version string into a tuple of ints for ordering.

    Non-numeric parts count as 0 so a malformed version never outranks a
    well-formed one.
    """
    parts = []
    for piece in str(version).split("."):
        parts.append(int(piece) if piece.isdigit() else 0)
    return tuple(parts)


@dataclass
class RemoteAsset:
    """A named unit of remote storage (input media or job output)."""

    id: str
    name: str
    options: int = AssetCreationOptions.NONE

    @classmethod
    def from_dict(cls, data: dict) -> RemoteAsset:
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            options=data.get("Options", AssetCreationOptions.NONE),
        )


@dataclass
class AssetFile:
    """One blob belonging to an asset."""

    id: str
    name: str
    parent_asset_id: str | None = None
    content_file_size: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> AssetFile:
        # ContentFileSize is an Edm.Int64, which OData JSON serializes as a string.
        return cls(
            id=data["Id"],
            name=data["Name"],
            parent_asset_id=data.get("ParentAssetId"),
            content_file_size=int(data.get("ContentFileSize") or 0),
        )


@dataclass
class MediaProcessor:
    """A named, versioned processing capability offered by the service."""

    id: str
    name: str
    version: str
    vendor: str | None = None

    @property
    def version_tuple(self) -> tuple[int, ...]:
        return parse_version(self.version)

    @classmethod
    def from_dict(cls, data: dict) -> MediaProcessor:
        return cls(
            id=data["Id"],
            name=data["Name"],
            version=data.get("Version") or "0",
            vendor=data.get("Vendor"),
        )


@dataclass
class ErrorDetail:
    code: str
    message: str

    @classmethod
    def from_dict(cls, data: dict) -> ErrorDetail:
        return cls(code=data.get("Code") or "", message=data.get("Message") or "")


@dataclass
class Task:
    """A single processing step inside a job."""

    id: str
    name: str
    progress: float = 0.0
    state: int = 0
    error_details: list[ErrorDetail] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> Task:
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            progress=float(data.get("Progress") or 0.0),
            state=int(data.get("State") or 0),
            error_details=[ErrorDetail.from_dict(e) for e in _results(data.get("ErrorDetails"))],
        )


@dataclass
class Job:
    """A unit of remote work and its current observed state.

    ``tasks`` and ``output_assets`` are only populated when the client
    fetched them; a freshly parsed job carries whatever was inlined.
    """

    id: str
    name: str
    state: JobState
    tasks: list[Task] = field(default_factory=list)
    output_assets: list[RemoteAsset] = field(default_factory=list)

    @property
    def overall_progress(self) -> float:
        """Mean progress of all tasks in percent (0 when no task is known)."""
        if not self.tasks:
            return 0.0
        return sum(t.progress for t in self.tasks) / len(self.tasks)

    @classmethod
    def from_dict(cls, data: dict) -> Job:
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            state=JobState(int(data.get("State") or 0)),
            tasks=[Task.from_dict(t) for t in _results(data.get("Tasks"))],
            output_assets=[
                RemoteAsset.from_dict(a) for a in _results(data.get("OutputMediaAssets"))
            ],
        )


@dataclass
class AccessPolicy:
    id: str
    name: str
    duration_minutes: float
    permissions: int

    @classmethod
    def from_dict(cls, data: dict) -> AccessPolicy:
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            duration_minutes=float(data.get("DurationInMinutes") or 0.0),
            permissions=int(data.get("Permissions") or 0),
        )


@dataclass
class AccessLocator:
    """A time-bounded SAS grant on an asset's storage container.

    WHY: Blob transfers never carry the bearer token; they authenticate
    with the SAS query string appended to each blob URL.

    RULES:
    - base_uri is the container URL without a trailing slash
    - content_access_component is the SAS query string starting with "?"
    """

    id: str
    base_uri: str
    content_access_component: str
    expiration: str | None = None

    def url_for(self, filename: str) -> str:
        """Build the SAS URL of one blob inside the locator's container."""
        return "{}/{}{}".format(
            self.base_uri.rstrip("/"), quote(filename), self.content_access_component
        )

    @classmethod
    def from_dict(cls, data: dict) -> AccessLocator:
        return cls(
            id=data["Id"],
            base_uri=data.get("BaseUri") or "",
            content_access_component=data.get("ContentAccessComponent") or "",
            expiration=data.get("ExpirationDateTime"),
        )
