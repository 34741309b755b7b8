"""Installer-reported package metadata: the input side of a build."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

# Installer descriptions longer than this are cut down for the summary.
SUMMARY_MAX_LENGTH = 40


class InstalledPackageInfo(BaseModel):
    """What the platform's package manager reports about an installed package.

    Everything the pipeline cannot derive from the archive bytes alone
    (label, version, permissions, features, install timestamps) arrives
    through this model.
    """

    model_config = ConfigDict(frozen=True)

    package_identifier: str
    label: str = ""
    version_name: str = ""
    version_code: int = Field(default=0, ge=0)
    requested_permissions: frozenset[str] = frozenset()
    declared_features: tuple[str, ...] = ()
    archive_path: Path
    installer_package: str | None = None
    installer_label: str | None = None
    description: str | None = None
    first_install_time: datetime | None = None
    last_update_time: datetime | None = None

    def summary(self) -> str:
        """Short description shown for packages that came from elsewhere.

        Uses the installer description when there is one, truncated to
        ``SUMMARY_MAX_LENGTH`` characters, otherwise names the installer.
        """
        if self.description:
            return self.description[:SUMMARY_MAX_LENGTH]
        installer = self.installer_label or self.installer_package or "unknown"
        return f"(installed by {installer})"
