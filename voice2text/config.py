"""Configuration constants, appsettings loading, and .env loading.

WHY: The indexer needs four service settings (REST endpoint, tenant,
client id, client secret) plus a per-input job configuration file. Keeping
every tunable in one module means the transfer widths, poll interval and
processor name are easy to find and override without touching logic.

HOW: python-dotenv loads the .env file on import. Constants are plain
module-level values read from the environment with defaults. Service
settings come from appsettings.json (validated by the pydantic Settings
model), with same-named environment variables taking precedence.

RULES:
- appsettings.json keys: AMSRestAPIEndpoint, AMSTenantDomain,
  AMSAClientId, AMSClientSecret
- Environment variables with those names override the file
- The job configuration lives at <input-dir>/config.json and is passed
  to the processor untouched
- Every missing setting or file raises ConfigurationMissing
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

load_dotenv()

# ---------------------------------------------------------------------------
# Service defaults
# ---------------------------------------------------------------------------

MEDIA_PROCESSOR_NAME = os.getenv("MEDIA_PROCESSOR_NAME", "Azure Media Indexer 2 Preview")
AZURE_AD_AUTHORITY = os.getenv("AZURE_AD_AUTHORITY", "https://login.microsoftonline.com")
AZURE_MEDIA_RESOURCE = os.getenv("AZURE_MEDIA_RESOURCE", "https://rest.media.azure.net")
APPSETTINGS_PATH = os.getenv("APPSETTINGS_PATH", "appsettings.json")

JOB_NAME = "Voice2Text Job"
TASK_NAME = "Voice2Text Task"
OUTPUT_ASSET_NAME = "Voice2Text Output"
JOB_CONFIGURATION_FILENAME = "config.json"

# ---------------------------------------------------------------------------
# Transfer, polling and download defaults
# ---------------------------------------------------------------------------

NUMBER_OF_CONCURRENT_TRANSFERS = int(os.getenv("NUMBER_OF_CONCURRENT_TRANSFERS", "20"))
PARALLEL_TRANSFER_THREAD_COUNT = int(os.getenv("PARALLEL_TRANSFER_THREAD_COUNT", "20"))
TRANSFER_BLOCK_SIZE = int(os.getenv("TRANSFER_BLOCK_SIZE", str(4 * 1024 * 1024)))
DOWNLOAD_POLICY_DAYS = int(os.getenv("DOWNLOAD_POLICY_DAYS", "30"))
POLL_INTERVAL_S = float(os.getenv("POLL_INTERVAL_S", "2.0"))

# Escape only stops watching the job unless this is switched on.
CANCEL_REMOTE_JOB_ON_ESCAPE = os.getenv("CANCEL_REMOTE_JOB_ON_ESCAPE", "false").lower() == "true"

CAPTION_SUFFIX = "_aud_SpReco.vtt"
"""Name suffix of the caption file emitted by Azure Media Indexer 2."""


class ConfigurationMissing(ValueError):
    """Raised when a required setting or the job configuration file is absent."""


class Settings(BaseModel):
    """Resolved Azure Media Services connection settings.

    Field aliases match the appsettings.json keys so the file can be
    validated as-is.
    """

    rest_api_endpoint: str = Field(alias="AMSRestAPIEndpoint")
    tenant_domain: str = Field(alias="AMSTenantDomain")
    client_id: str = Field(alias="AMSAClientId")
    client_secret: str = Field(alias="AMSClientSecret")

    @field_validator("*")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


_SETTING_KEYS = ("AMSRestAPIEndpoint", "AMSTenantDomain", "AMSAClientId", "AMSClientSecret")


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """Load service settings from appsettings.json and the environment.

    WHY: Credentials must stay out of source code, and operators either
    keep an appsettings.json next to where they run the tool or export
    environment variables (e.g. in CI).

    HOW: Reads the JSON file if it exists, then overlays any non-empty
    environment variable with the same key, then validates through the
    Settings model.

    RULES:
    - A missing file is fine when the environment supplies every key
    - Malformed JSON, missing or blank keys raise ConfigurationMissing

    Args:
        path: Settings file path. Defaults to APPSETTINGS_PATH.

    Returns:
        Validated Settings.
    """
    settings_path = Path(path if path is not None else APPSETTINGS_PATH)
    values: dict = {}

    if settings_path.is_file():
        try:
            values = json.loads(settings_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigurationMissing(
                "Settings file {} is not valid JSON: {}".format(settings_path, exc)
            ) from exc
        if not isinstance(values, dict):
            raise ConfigurationMissing(
                "Settings file {} must contain a JSON object".format(settings_path)
            )

    for key in _SETTING_KEYS:
        env_value = os.getenv(key, "").strip()
        if env_value:
            values[key] = env_value

    try:
        return Settings.model_validate(values)
    except ValidationError as exc:
        missing = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        raise ConfigurationMissing(
            "Missing Azure Media Services settings: {} (looked in {} and the environment)".format(
                ", ".join(missing), settings_path
            )
        ) from exc


def job_configuration_path(input_path: str | Path) -> Path:
    """Return <input-dir>/config.json for the given media file."""
    return Path(input_path).resolve().parent / JOB_CONFIGURATION_FILENAME


def load_job_configuration(input_path: str | Path) -> str:
    """Read the processor configuration that sits beside the input file.

    The content is opaque to this tool and is sent to the processor
    exactly as read.

    Raises:
        ConfigurationMissing: If config.json does not exist.
    """
    config_path = job_configuration_path(input_path)
    if not config_path.is_file():
        raise ConfigurationMissing("Job configuration file {} does not exist.".format(config_path))
    return config_path.read_text(encoding="utf-8")
