"""Configuration loaded from environment variables.

Both models are read once at startup and passed explicitly into the
components that need them.  Empty environment values fall back to the
defaults below.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RawURLSource(str, Enum):
    RAW_GITHUB = "raw_github"


class SequencerConfig(BaseSettings):
    """Settings of the SequenceR repair tool (``SEQUENCER_*`` variables)."""

    DOCKER_TAG: str = "javierron/sequencer-multimodel:1.0"
    THREADS: int = 4
    BEAM_SIZE: int = 50
    TIMEOUT: int = 120  # minutes, for the whole batch
    COLLECTOR_PATH: str = str(Path.home() / "continuous-learning-data")
    CONTEXT_SIZE: int = 3
    RAW_URL_SOURCE: RawURLSource = RawURLSource.RAW_GITHUB
    ODS_PATH: str = "/ODSPatches"

    model_config = SettingsConfigDict(
        env_prefix="SEQUENCER_",
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    @field_validator("RAW_URL_SOURCE", mode="before")
    @classmethod
    def _parse_raw_url_source(cls, value):
        # raw_github is the only source; unknown values fall back to it
        if isinstance(value, str):
            value = value.strip().lower()
            if value not in {s.value for s in RawURLSource}:
                return RawURLSource.RAW_GITHUB
        return value

    @property
    def timeout_seconds(self) -> float:
        return self.TIMEOUT * 60.0


class Settings(BaseSettings):
    """Pipeline-wide settings."""

    WORKSPACE_PATH: str = "./workspace"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "shared/logs/pipeline.log"

    MAVEN_BINARY: str = "mvn"
    MAVEN_REPOSITORY: str = ""
    VALIDATION_GOAL: str = "test"

    MAX_PATCHES_PER_TOOL: int = 16
    DETECTION_STRATEGY: str = "stacktrace"  # stacktrace | localization
    LOCALIZATION_COMMAND: str = ""
    CLASSIFIER: str = "none"  # none | ods
    ODS_COMMAND: str = ""

    RESULTS_FILE: str = "shared/results.json"

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )


def load_config() -> tuple[Settings, SequencerConfig]:
    """Read both configuration models from the environment."""
    return Settings(), SequencerConfig()
