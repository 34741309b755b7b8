"""Installed-artifact models (immutable once built).

An ``InstalledArtifact`` is the canonical record derived from a locally
installed package: its archive, its installer-reported metadata, and
everything the introspection pipeline pulled out of the archive bytes.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

# The platform's historical minimum API level, used when ``uses-sdk`` omits
# min/target, and the sentinel meaning "no upper bound" for max.
SDK_VERSION_MIN_VALUE = 0
SDK_VERSION_MAX_VALUE = 127


class SdkRange(BaseModel):
    """The ``uses-sdk`` compatibility range of a package.

    ``target_sdk_version`` is raised to ``min_sdk_version`` whenever it
    would otherwise be lower.
    """

    model_config = ConfigDict(frozen=True)

    min_sdk_version: int = SDK_VERSION_MIN_VALUE
    target_sdk_version: int = SDK_VERSION_MIN_VALUE
    max_sdk_version: int = SDK_VERSION_MAX_VALUE

    @model_validator(mode="before")
    @classmethod
    def _raise_target_to_min(cls, data: object) -> object:
        if isinstance(data, dict):
            min_sdk = data.get("min_sdk_version", SDK_VERSION_MIN_VALUE)
            target_sdk = data.get("target_sdk_version", SDK_VERSION_MIN_VALUE)
            if target_sdk < min_sdk:
                data = {**data, "target_sdk_version": min_sdk}
        return data

    @property
    def is_max_bounded(self) -> bool:
        """Whether the package declared an explicit ``maxSdkVersion``."""
        return self.max_sdk_version != SDK_VERSION_MAX_VALUE


class ContentHash(BaseModel):
    """A digest together with the algorithm that produced it."""

    model_config = ConfigDict(frozen=True)

    algorithm: str  # "sha256", "md5", ...
    digest: str  # lowercase hex

    def __str__(self) -> str:
        return f"{self.algorithm}:{self.digest}"


class ExpansionFile(BaseModel):
    """An expansion (OBB) file found next to an installed package."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content_hash: ContentHash


class InstalledArtifact(BaseModel):
    """Canonical record of an installed package.

    Built fresh on every introspection request by
    ``InstalledArtifactBuilder``; never mutated and never published
    half-built.
    """

    model_config = ConfigDict(frozen=True)

    package_identifier: str = Field(min_length=1)
    name: str = Field(min_length=1)
    version_name: str = ""
    version_code: int = Field(default=0, ge=0)

    min_sdk_version: int = SDK_VERSION_MIN_VALUE
    target_sdk_version: int = SDK_VERSION_MIN_VALUE
    max_sdk_version: int = SDK_VERSION_MAX_VALUE

    requested_permissions: frozenset[str] = frozenset()
    native_abis: frozenset[str] = frozenset()
    declared_features: tuple[str, ...] = ()

    expansion_main: ExpansionFile | None = None
    expansion_patch: ExpansionFile | None = None

    archive_content_hash: ContentHash
    fingerprint: str = Field(pattern=r"^[0-9a-f]{32}$")
    archive_path: Path

    summary: str = ""
    installed_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def _check_sdk_range(self) -> InstalledArtifact:
        if self.target_sdk_version < self.min_sdk_version:
            raise ValueError(
                f"target_sdk_version {self.target_sdk_version} is below "
                f"min_sdk_version {self.min_sdk_version}"
            )
        return self

    @property
    def sdk_range(self) -> SdkRange:
        return SdkRange(
            min_sdk_version=self.min_sdk_version,
            target_sdk_version=self.target_sdk_version,
            max_sdk_version=self.max_sdk_version,
        )

    @property
    def archive_name(self) -> str:
        """File name the repository index uses for this version."""
        return f"{self.package_identifier}_{self.version_code}.apk"

    @property
    def icon_name(self) -> str:
        return icon_name_for(self.package_identifier, self.version_code)


def icon_name_for(package_identifier: str, version_code: int) -> str:
    """Return the repository icon file name for a package version."""
    return f"{package_identifier}.{version_code}.png"
