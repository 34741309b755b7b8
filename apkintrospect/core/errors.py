"""Exception types raised by the introspection pipeline.

Only ``FingerprintUnavailable`` and ``ArtifactBuildFailure`` escape an
artifact build; ``ManifestParseError`` is absorbed by the SDK-range
extractor, which falls back to defaults.
"""

from __future__ import annotations


class IntrospectionError(RuntimeError):
    """Base class for all apkintrospect failures."""


class ManifestParseError(IntrospectionError):
    """Raised when a compiled binary XML stream is truncated or malformed."""


class FingerprintUnavailable(IntrospectionError):
    """Raised when the signing certificate cannot be extracted.

    Covers a missing signed entry, an empty certificate chain, and a
    certificate that cannot be DER-encoded. Always fatal to the build.
    """


class ArtifactBuildFailure(IntrospectionError):
    """Raised when an archive is unreadable or the built record is invalid."""

    def __init__(self, package_identifier: str, reason: str) -> None:
        self.package_identifier = package_identifier
        self.reason = reason
        super().__init__(f"Cannot build artifact for {package_identifier!r}: {reason}")
