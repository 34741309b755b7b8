"""InstalledArtifactBuilder turns an installed package into an artifact record.

One build per installed package.  The SDK range, ABI set and expansion
files are best-effort and degrade to defaults; the signing fingerprint is
mandatory.  A build either returns a complete, valid ``InstalledArtifact``
or raises; nothing half-built ever leaves this module.
"""

from __future__ import annotations

import logging
import os
import re
import zipfile
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from apkintrospect.config import IntrospectConfig
from apkintrospect.core.errors import ArtifactBuildFailure, FingerprintUnavailable
from apkintrospect.core.expansion_files import ExpansionFileResolver, ResolvedExpansionFiles
from apkintrospect.core.fingerprint import SigningCertificateFingerprinter
from apkintrospect.core.hasher import hash_file
from apkintrospect.core.manifest_sdk import (
    ArchiveManifestSource,
    ManifestSdkRangeExtractor,
    ManifestSource,
)
from apkintrospect.core.native_abi import scan_native_abis
from apkintrospect.core.signed_archive import SignedArchive
from apkintrospect.models.artifacts import InstalledArtifact
from apkintrospect.models.package_info import InstalledPackageInfo

logger = logging.getLogger(__name__)

FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{32}$")


class BuildOutcome(BaseModel):
    """Result of one build inside ``build_many``: an artifact or an error."""

    model_config = ConfigDict(frozen=True)

    package_identifier: str
    artifact: InstalledArtifact | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.artifact is not None


class InstalledArtifactBuilder:
    """Builds ``InstalledArtifact`` records.

    Parameters
    ----------
    config:
        Storage root, hash algorithm and signed-entry name.  Uses
        ``IntrospectConfig()`` defaults if not provided.
    manifest_source:
        Where ``uses-sdk`` is read from.  Defaults to reading the manifest
        out of each package's own archive.
    """

    def __init__(
        self,
        config: IntrospectConfig | None = None,
        *,
        manifest_source: ManifestSource | None = None,
    ) -> None:
        self.config = config or IntrospectConfig()
        self._manifest_source = manifest_source
        self._fingerprinter = SigningCertificateFingerprinter(self.config.signed_entry_name)
        self._expansion_resolver = ExpansionFileResolver(
            self.config.external_storage_root,
            hash_algorithm=self.config.hash_algorithm,
        )

    # ------------------------------------------------------------------
    # Single build
    # ------------------------------------------------------------------

    def build(self, package: InstalledPackageInfo) -> InstalledArtifact:
        """Introspect *package* and return its artifact record.

        Raises
        ------
        FingerprintUnavailable
            If the signing certificate cannot be extracted.
        ArtifactBuildFailure
            If the archive is unreadable, uses encryption or an unsupported
            compression method, or the record would be invalid.
        """
        pkg_id = package.package_identifier
        archive_path = Path(package.archive_path)
        logger.debug("Building artifact for %s from %s", pkg_id, archive_path)

        try:
            archive_hash = hash_file(archive_path, self.config.hash_algorithm)
        except OSError as exc:
            raise ArtifactBuildFailure(pkg_id, f"archive unreadable: {exc}") from exc
        except ValueError as exc:
            raise ArtifactBuildFailure(pkg_id, f"cannot hash archive: {exc}") from exc

        source = self._manifest_source or ArchiveManifestSource(archive_path)
        sdk_range = ManifestSdkRangeExtractor(source).extract(pkg_id)
        expansion = self._resolve_expansion_files(package)

        try:
            with SignedArchive(archive_path) as archive:
                native_abis = scan_native_abis(archive.entry_names())
                fingerprint = self._fingerprinter.fingerprint(archive)
        except FingerprintUnavailable:
            raise
        except (OSError, zipfile.BadZipFile, RuntimeError, NotImplementedError) as exc:
            # zipfile raises RuntimeError for encrypted entries and
            # NotImplementedError for unsupported compression methods.
            raise ArtifactBuildFailure(pkg_id, f"archive unreadable: {exc}") from exc

        self._validate(package, fingerprint, archive_path)

        try:
            artifact = InstalledArtifact(
                package_identifier=pkg_id,
                name=package.label,
                version_name=package.version_name,
                version_code=package.version_code,
                min_sdk_version=sdk_range.min_sdk_version,
                target_sdk_version=sdk_range.target_sdk_version,
                max_sdk_version=sdk_range.max_sdk_version,
                requested_permissions=package.requested_permissions,
                native_abis=native_abis,
                declared_features=package.declared_features,
                expansion_main=expansion.main,
                expansion_patch=expansion.patch,
                archive_content_hash=archive_hash,
                fingerprint=fingerprint,
                archive_path=archive_path,
                summary=package.summary(),
                installed_at=package.first_install_time,
                updated_at=package.last_update_time,
            )
        except ValidationError as exc:
            raise ArtifactBuildFailure(pkg_id, f"invalid record: {exc}") from exc

        logger.info("Built artifact for %s (%s)", pkg_id, fingerprint)
        return artifact

    def _resolve_expansion_files(self, package: InstalledPackageInfo) -> ResolvedExpansionFiles:
        try:
            return self._expansion_resolver.resolve(
                package.package_identifier, package.version_code
            )
        except OSError as exc:
            logger.debug(
                "Skipping expansion files for %s: %s", package.package_identifier, exc
            )
            return ResolvedExpansionFiles()

    @staticmethod
    def _validate(package: InstalledPackageInfo, fingerprint: str, archive_path: Path) -> None:
        pkg_id = package.package_identifier
        if not pkg_id:
            raise ArtifactBuildFailure(pkg_id, "package identifier is empty")
        if not package.label:
            raise ArtifactBuildFailure(pkg_id, "name is empty")
        if not FINGERPRINT_PATTERN.match(fingerprint):
            raise ArtifactBuildFailure(pkg_id, f"malformed fingerprint {fingerprint!r}")
        if not (archive_path.is_file() and os.access(archive_path, os.R_OK)):
            raise ArtifactBuildFailure(pkg_id, f"{archive_path} is not a readable file")

    # ------------------------------------------------------------------
    # Bulk rescans
    # ------------------------------------------------------------------

    def build_many(
        self,
        packages: Iterable[InstalledPackageInfo],
        *,
        max_workers: int | None = None,
    ) -> list[BuildOutcome]:
        """Build several packages in parallel, one outcome per package.

        Builds share no state.  A failed build yields an outcome with
        ``error`` set and no artifact; it never affects the others.
        Outcomes come back in input order.
        """
        packages = list(packages)
        workers = max_workers or self.config.max_workers
        with ThreadPoolExecutor(max_workers=workers) as pool:
            return list(pool.map(self._build_outcome, packages))

    def _build_outcome(self, package: InstalledPackageInfo) -> BuildOutcome:
        try:
            artifact = self.build(package)
        except (FingerprintUnavailable, ArtifactBuildFailure) as exc:
            logger.warning("Build failed for %s: %s", package.package_identifier, exc)
            return self._failed(package, exc)
        except Exception as exc:
            logger.exception("Unexpected error building %s", package.package_identifier)
            failure = ArtifactBuildFailure(
                package.package_identifier, f"{type(exc).__name__}: {exc}"
            )
            return self._failed(package, failure)
        return BuildOutcome(package_identifier=package.package_identifier, artifact=artifact)

    @staticmethod
    def _failed(package: InstalledPackageInfo, exc: Exception) -> BuildOutcome:
        return BuildOutcome(
            package_identifier=package.package_identifier,
            error=f"{type(exc).__name__}: {exc}",
        )
