"""Signing-certificate fingerprint, compatible with the repository server.

The repository tooling identifies a signer by a legacy "double hash":

1. take the first signing certificate's DER encoding,
2. write it out as lowercase ASCII hex (two bytes of text per DER byte),
3. MD5 that *text*, and render the digest as lowercase hex.

Hashing the DER bytes directly, or using uppercase hex, yields a different
value that the server will never match.  Keep the transform exactly as is.

Certificates are only attached to an archive entry after its stream has
been read to the end, so the signed entry is drained before asking for
them.
"""

from __future__ import annotations

import binascii
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

from cryptography.hazmat.primitives import serialization

from apkintrospect.core.errors import FingerprintUnavailable
from apkintrospect.core.hasher import md5_hex
from apkintrospect.core.manifest_sdk import MANIFEST_ENTRY_NAME
from apkintrospect.core.signed_archive import EntryStream, SignedArchive

logger = logging.getLogger(__name__)

_DRAIN_CHUNK_SIZE = 2048

# Whether the alternate crypto provider may serve certificate reads.  Some
# platform releases broke jar verification while it was registered, so it
# is switched off for the duration of a fingerprint and restored after.
_alternate_provider_enabled: ContextVar[bool] = ContextVar(
    "alternate_crypto_provider_enabled", default=True
)


def alternate_provider_enabled() -> bool:
    """Return whether the alternate crypto provider is active here."""
    return _alternate_provider_enabled.get()


@contextmanager
def crypto_provider_guard() -> Iterator[None]:
    """Disable the alternate crypto provider within the ``with`` block.

    Scoped to the current context, so concurrent builds do not see each
    other's state, and always restored on exit.
    """
    token = _alternate_provider_enabled.set(False)
    try:
        yield
    finally:
        _alternate_provider_enabled.reset(token)


def hex_ascii_bytes(der: bytes) -> bytes:
    """Return the lowercase ASCII hex text of *der* as raw bytes.

    Each input byte becomes two output bytes: the characters of its high
    and low nibble, ``0-9`` then ``a-f``.
    """
    return binascii.hexlify(der)


def fingerprint_certificate(der: bytes) -> str:
    """Fingerprint a DER-encoded certificate (MD5 of its hex text)."""
    return md5_hex(hex_ascii_bytes(der))


def drain(stream: EntryStream) -> None:
    """Read *stream* to end-of-stream, discarding the content."""
    while stream.read(_DRAIN_CHUNK_SIZE):
        pass


class SigningCertificateFingerprinter:
    """Extracts the signer certificate of an archive and fingerprints it.

    Parameters
    ----------
    signed_entry_name:
        Entry used as the signed-entry proxy.  Only its attached
        certificate matters, never its content.
    """

    def __init__(self, signed_entry_name: str = MANIFEST_ENTRY_NAME) -> None:
        self.signed_entry_name = signed_entry_name

    def certificate_der(self, archive: SignedArchive) -> bytes:
        """Return the DER encoding of the first certificate on the signed entry.

        Raises
        ------
        FingerprintUnavailable
            If the entry is missing, carries no certificates, or the
            certificate cannot be encoded.
        """
        with crypto_provider_guard():
            entry = archive.get_entry(self.signed_entry_name)
            if entry is None:
                raise FingerprintUnavailable(
                    f"Signed entry {self.signed_entry_name!r} not found in {archive.path}"
                )

            with archive.open_entry(entry) as stream:
                drain(stream)

            if not entry.certificates:
                raise FingerprintUnavailable(
                    f"No certificates found on {self.signed_entry_name!r} in {archive.path}"
                )

            try:
                return entry.certificates[0].public_bytes(serialization.Encoding.DER)
            except ValueError as exc:
                raise FingerprintUnavailable(
                    f"Cannot encode signing certificate from {archive.path}: {exc}"
                ) from exc

    def fingerprint(self, archive: SignedArchive) -> str:
        """Return the 32-character lowercase hex fingerprint of the signer."""
        fp = fingerprint_certificate(self.certificate_der(archive))
        logger.debug("Fingerprint for %s: %s", archive.path, fp)
        return fp

    def fingerprint_path(self, path: Path) -> str:
        """Open the archive at *path*, fingerprint it, and close it again."""
        with SignedArchive(path) as archive:
            return self.fingerprint(archive)
