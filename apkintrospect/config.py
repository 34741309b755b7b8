"""Runtime configuration — env-driven via pydantic-settings.

Reads from a .env file and APKINTROSPECT_* environment variables.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IntrospectConfig(BaseSettings):
    """Introspection settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export APKINTROSPECT_LOG_LEVEL=DEBUG
        export APKINTROSPECT_EXTERNAL_STORAGE_ROOT=/mnt/sdcard
        export APKINTROSPECT_HASH_ALGORITHM=sha512
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="APKINTROSPECT_",
        env_file_encoding="utf-8",
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Expansion files live under {root}/Android/obb/{package}
    external_storage_root: Path = Path("/sdcard")

    # Applied to the whole archive and to expansion files
    hash_algorithm: str = "sha256"

    # Entry whose attached certificate is fingerprinted
    signed_entry_name: str = "AndroidManifest.xml"

    # Worker threads for bulk rescans
    max_workers: int = 4

    @field_validator("hash_algorithm")
    @classmethod
    def validate_hash_algorithm(cls, value: str) -> str:
        algorithm = value.lower()
        # shake_* digests need an explicit length, so hexdigest() fails
        if algorithm.startswith("shake_") or algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {value!r}")
        return algorithm


# Module-level singleton, import as `from apkintrospect.config import config`
config = IntrospectConfig()
