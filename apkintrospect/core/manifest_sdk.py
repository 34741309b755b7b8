"""``uses-sdk`` range extraction from a package's compiled manifest.

The installer does not report min/target/max SDK versions, so they are read
straight from ``<uses-sdk>`` in ``AndroidManifest.xml``.  Any failure to
resolve or parse the manifest is recoverable: the extractor logs it and
returns the default range instead of aborting the build.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from apkintrospect.core.axml import BinaryXmlReader, TokenKind
from apkintrospect.core.errors import IntrospectionError
from apkintrospect.models.artifacts import (
    SDK_VERSION_MAX_VALUE,
    SDK_VERSION_MIN_VALUE,
    SdkRange,
)

logger = logging.getLogger(__name__)

MANIFEST_ENTRY_NAME = "AndroidManifest.xml"
USES_SDK_ELEMENT = "uses-sdk"


@runtime_checkable
class ManifestSource(Protocol):
    """Resolves a package identifier to its compiled manifest bytes.

    On a device this is the platform's asset manager; off-device the
    manifest comes out of the APK itself (``ArchiveManifestSource``).
    """

    def open_manifest(self, package_identifier: str) -> bytes:
        """Return the raw compiled manifest for *package_identifier*.

        Raises ``LookupError`` if the package is unknown and ``OSError``
        if the manifest cannot be read.
        """
        ...


class ArchiveManifestSource:
    """Reads the compiled manifest out of an APK on disk."""

    def __init__(self, archive_path: Path, entry_name: str = MANIFEST_ENTRY_NAME) -> None:
        self.archive_path = Path(archive_path)
        self.entry_name = entry_name

    def open_manifest(self, package_identifier: str) -> bytes:
        try:
            with zipfile.ZipFile(self.archive_path) as zf:
                return zf.read(self.entry_name)
        except KeyError as exc:
            raise LookupError(
                f"{self.entry_name} not found in archive for {package_identifier}"
            ) from exc


class ManifestSdkRangeExtractor:
    """Extracts the ``uses-sdk`` compatibility range.

    Parameters
    ----------
    source:
        Where manifests come from.
    """

    def __init__(self, source: ManifestSource) -> None:
        self._source = source

    def extract(self, package_identifier: str) -> SdkRange:
        """Return the SDK range for *package_identifier*.

        Scans until the first ``uses-sdk`` element and stops there; later
        occurrences are ignored.  Never raises: on any failure the default
        range is returned and the failure is logged.
        """
        min_sdk = SDK_VERSION_MIN_VALUE
        target_sdk = SDK_VERSION_MIN_VALUE
        max_sdk = SDK_VERSION_MAX_VALUE
        try:
            manifest = self._source.open_manifest(package_identifier)
            for token in BinaryXmlReader(manifest).tokens():
                if token.kind == TokenKind.START_TAG and token.name == USES_SDK_ELEMENT:
                    for attr in token.attributes:
                        if attr.name == "minSdkVersion":
                            min_sdk = attr.as_int()
                        elif attr.name == "targetSdkVersion":
                            target_sdk = attr.as_int()
                        elif attr.name == "maxSdkVersion":
                            max_sdk = attr.as_int()
                    break
        except (
            LookupError,
            OSError,
            ValueError,
            RuntimeError,
            NotImplementedError,
            zipfile.BadZipFile,
            IntrospectionError,
        ) as exc:
            logger.error(
                "Could not get min/max sdk version for %s: %s", package_identifier, exc
            )
            min_sdk = SDK_VERSION_MIN_VALUE
            target_sdk = SDK_VERSION_MIN_VALUE
            max_sdk = SDK_VERSION_MAX_VALUE

        # SdkRange raises target to min when it is lower.
        return SdkRange(
            min_sdk_version=min_sdk,
            target_sdk_version=target_sdk,
            max_sdk_version=max_sdk,
        )
