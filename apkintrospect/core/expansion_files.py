"""Expansion (OBB) file discovery for installed packages.

Expansion files live in ``<storage>/Android/obb/<package>/`` and are named
``{main|patch}.<versionTag>.<package>.obb``.

Matching names are ordered as plain strings, not by numeric version tag.
With tags of differing digit counts (``9`` vs ``10``) the "latest" pick can
be wrong.  Other consumers of this layout order names the same way, so it
is left that way.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from apkintrospect.core.hasher import DEFAULT_HASH_ALGORITHM, hash_file
from apkintrospect.models.artifacts import ExpansionFile

logger = logging.getLogger(__name__)


class ResolvedExpansionFiles(BaseModel):
    """The main and patch expansion files chosen for an installed version."""

    model_config = ConfigDict(frozen=True)

    main: ExpansionFile | None = None
    patch: ExpansionFile | None = None


def obb_dir(storage_root: Path, package_identifier: str) -> Path:
    """Return the conventional expansion-file directory for a package."""
    return Path(storage_root) / "Android" / "obb" / package_identifier


def expansion_file_pattern(package_identifier: str) -> re.Pattern[str]:
    return re.compile(
        r"(main|patch)\.([0-9]+)\." + re.escape(package_identifier) + r"\.obb"
    )


class ExpansionFileResolver:
    """Finds and hashes the expansion files that belong to an installed version.

    Parameters
    ----------
    storage_root:
        External storage root; the per-package directory is derived from it.
    hash_algorithm:
        Algorithm used for the file digests, normally the archive's.
    """

    def __init__(
        self,
        storage_root: Path,
        hash_algorithm: str = DEFAULT_HASH_ALGORITHM,
    ) -> None:
        self.storage_root = Path(storage_root)
        self.hash_algorithm = hash_algorithm

    def resolve(self, package_identifier: str, version_code: int) -> ResolvedExpansionFiles:
        """Pick the main/patch files whose version tag is ``<= version_code``.

        Walks the lexically sorted matches and keeps, per kind, the last one
        that is eligible.  A kind stays unset when it has no eligible file
        or its file cannot be read; the other kind is unaffected.
        """
        directory = obb_dir(self.storage_root, package_identifier)
        if not directory.is_dir():
            return ResolvedExpansionFiles()

        pattern = expansion_file_pattern(package_identifier)
        matches = sorted(
            p.name for p in directory.iterdir()
            if p.is_file() and pattern.fullmatch(p.name)
        )

        chosen: dict[str, str] = {}
        for filename in matches:
            kind, tag = pattern.fullmatch(filename).groups()
            if int(tag) <= version_code:
                chosen[kind] = filename

        return ResolvedExpansionFiles(
            main=self._describe(directory, chosen.get("main")),
            patch=self._describe(directory, chosen.get("patch")),
        )

    def _describe(self, directory: Path, filename: str | None) -> ExpansionFile | None:
        if filename is None:
            return None
        try:
            content_hash = hash_file(directory / filename, self.hash_algorithm)
        except OSError as exc:
            logger.debug("Skipping unreadable expansion file %s: %s", filename, exc)
            return None
        return ExpansionFile(filename=filename, content_hash=content_hash)
