"""apkintrospect data models — all Pydantic v2, all frozen (immutable)."""

from apkintrospect.models.artifacts import (
    SDK_VERSION_MAX_VALUE,
    SDK_VERSION_MIN_VALUE,
    ContentHash,
    ExpansionFile,
    InstalledArtifact,
    SdkRange,
    icon_name_for,
)
from apkintrospect.models.package_info import InstalledPackageInfo

__all__ = [
    # artifacts
    "SDK_VERSION_MIN_VALUE",
    "SDK_VERSION_MAX_VALUE",
    "SdkRange",
    "ContentHash",
    "ExpansionFile",
    "InstalledArtifact",
    "icon_name_for",
    # package info
    "InstalledPackageInfo",
]
