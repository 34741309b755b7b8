"""Zip archive reader that exposes per-entry signing certificates.

APKs signed with the JAR scheme carry ``META-INF/MANIFEST.MF`` (one
``Name:`` section per signed entry) and one or more signature block files
(``META-INF/*.RSA``, ``*.DSA``, ``*.EC``) holding PKCS#7 ``SignedData``.

Like the platform's jar reader, an entry's certificates are attached only
once its data stream has been read to end-of-stream.  Until then
``ArchiveEntry.certificates`` is empty.  Callers that need certificates
must drain the stream first.

Within each block the certificate named by the block's SignerInfo comes
first, followed by the rest of the chain.  Signatures are not verified
here; the certificates are only extracted.
"""

from __future__ import annotations

import logging
import zipfile
from pathlib import Path
from types import TracebackType
from typing import NamedTuple

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs7

logger = logging.getLogger(__name__)

JAR_MANIFEST_NAME = "META-INF/MANIFEST.MF"
SIGNATURE_BLOCK_SUFFIXES = (".RSA", ".DSA", ".EC")


class ArchiveEntry:
    """One entry of a ``SignedArchive``.

    ``certificates`` stays empty until the entry's stream has been fully
    read through ``SignedArchive.open_entry``.
    """

    def __init__(self, info: zipfile.ZipInfo) -> None:
        self.info = info
        self._certificates: tuple[x509.Certificate, ...] = ()

    @property
    def name(self) -> str:
        return self.info.filename

    @property
    def certificates(self) -> tuple[x509.Certificate, ...]:
        return self._certificates

    def __repr__(self) -> str:
        return f"ArchiveEntry({self.name!r}, certificates={len(self._certificates)})"


class EntryStream:
    """Read-only stream over one entry; attaches certificates at EOF."""

    def __init__(self, archive: SignedArchive, entry: ArchiveEntry) -> None:
        self._archive = archive
        self._entry = entry
        self._raw = archive._zip.open(entry.info)
        self._exhausted = False

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        if size < 0 or (not data and size != 0):
            self._mark_exhausted()
        return data

    def _mark_exhausted(self) -> None:
        if not self._exhausted:
            self._exhausted = True
            self._archive._attach_certificates(self._entry)

    def close(self) -> None:
        self._raw.close()

    def __enter__(self) -> EntryStream:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class SignedArchive:
    """An APK opened for entry listing and certificate extraction.

    Use as a context manager so the underlying file handle is released on
    every exit path::

        with SignedArchive(path) as archive:
            entry = archive.get_entry("AndroidManifest.xml")

    Parameters
    ----------
    path:
        Path to the archive.

    Raises
    ------
    OSError
        If the file cannot be opened.
    zipfile.BadZipFile
        If the file is not a zip container.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._zip = zipfile.ZipFile(self.path)
        self._entries: dict[str, ArchiveEntry] = {}
        self._signed_names: frozenset[str] | None = None
        self._signer_certificates: tuple[x509.Certificate, ...] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._zip.close()

    def __enter__(self) -> SignedArchive:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def entry_names(self) -> list[str]:
        """Return entry paths in central-directory order."""
        return self._zip.namelist()

    def get_entry(self, name: str) -> ArchiveEntry | None:
        """Return the entry called *name*, or None if the archive lacks it."""
        if name not in self._entries:
            try:
                info = self._zip.getinfo(name)
            except KeyError:
                return None
            self._entries[name] = ArchiveEntry(info)
        return self._entries[name]

    def open_entry(self, entry: ArchiveEntry) -> EntryStream:
        """Open *entry* for reading.

        Reading the stream to end-of-stream attaches the entry's signing
        certificates.
        """
        return EntryStream(self, entry)

    # ------------------------------------------------------------------
    # Signature metadata
    # ------------------------------------------------------------------

    def _attach_certificates(self, entry: ArchiveEntry) -> None:
        if entry.name in self._signed_entry_names():
            entry._certificates = self._signers()

    def _signed_entry_names(self) -> frozenset[str]:
        if self._signed_names is None:
            try:
                manifest = self._zip.read(JAR_MANIFEST_NAME)
            except KeyError:
                self._signed_names = frozenset()
            else:
                self._signed_names = parse_signed_entry_names(manifest)
        return self._signed_names

    def _signers(self) -> tuple[x509.Certificate, ...]:
        if self._signer_certificates is None:
            certificates: list[x509.Certificate] = []
            for name in sorted(self._signature_block_names()):
                block = self._zip.read(name)
                try:
                    loaded = pkcs7.load_der_pkcs7_certificates(block)
                except ValueError as exc:
                    logger.warning("Unreadable signature block %s in %s: %s", name, self.path, exc)
                    continue
                certificates.extend(signer_first(block, loaded))
            self._signer_certificates = tuple(certificates)
        return self._signer_certificates

    def _signature_block_names(self) -> list[str]:
        names = []
        for name in self._zip.namelist():
            directory, _, filename = name.rpartition("/")
            if directory == "META-INF" and filename.upper().endswith(SIGNATURE_BLOCK_SUFFIXES):
                names.append(name)
        return names


def parse_signed_entry_names(manifest: bytes) -> frozenset[str]:
    """Return the entry names listed in a JAR ``MANIFEST.MF``.

    Lines are wrapped at 72 bytes; a line starting with a single space
    continues the previous one.
    """
    lines: list[str] = []
    for raw_line in manifest.decode("utf-8", errors="replace").splitlines():
        if raw_line.startswith(" ") and lines:
            lines[-1] += raw_line[1:]
        else:
            lines.append(raw_line)

    names = set()
    for line in lines:
        if line.startswith("Name: "):
            names.add(line[len("Name: "):])
    return frozenset(names)


# ---------------------------------------------------------------------------
# SignerInfo lookup
# ---------------------------------------------------------------------------

_DER_INTEGER = 0x02
_DER_SEQUENCE = 0x30
_DER_SET = 0x31
_DER_EXPLICIT_0 = 0xA0
_DER_SUBJECT_KEY_ID = 0x80


class SignerId(NamedTuple):
    """How a SignerInfo names its certificate.

    Either ``issuer`` (DER-encoded Name) and ``serial`` are set, or only
    ``key_identifier`` is.
    """

    issuer: bytes | None = None
    serial: int | None = None
    key_identifier: bytes | None = None

    def matches(self, certificate: x509.Certificate) -> bool:
        if self.key_identifier is not None:
            try:
                ski = certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
            except x509.ExtensionNotFound:
                return False
            return ski.value.digest == self.key_identifier
        return (
            certificate.serial_number == self.serial
            and certificate.issuer.public_bytes() == self.issuer
        )


def _der_element(data: bytes, offset: int) -> tuple[int, int, int]:
    """Return ``(tag, content_start, end)`` for the DER element at *offset*."""
    tag = data[offset]
    length = data[offset + 1]
    start = offset + 2
    if length & 0x80:
        count = length & 0x7F
        if not 0 < count <= 4:
            raise ValueError(f"Unsupported DER length form at offset {offset}")
        length = int.from_bytes(data[start:start + count], "big")
        start += count
    end = start + length
    if end > len(data):
        raise ValueError(f"Truncated DER element at offset {offset}")
    return tag, start, end


def _der_children(data: bytes, start: int, end: int) -> list[tuple[int, int, int, int]]:
    """Return ``(tag, offset, content_start, end)`` for each element in a constructed value."""
    children = []
    offset = start
    while offset < end:
        tag, content_start, child_end = _der_element(data, offset)
        children.append((tag, offset, content_start, child_end))
        offset = child_end
    return children


def _expect(tag: int, expected: int) -> None:
    if tag != expected:
        raise ValueError(f"Expected DER tag 0x{expected:02x}, found 0x{tag:02x}")


def signer_identifiers(block: bytes) -> list[SignerId]:
    """Return the signer identifiers of a PKCS#7 ``SignedData`` block, in order.

    Walks ``ContentInfo`` -> ``SignedData`` -> ``signerInfos`` and reads the
    ``sid`` of each ``SignerInfo``.

    Raises
    ------
    ValueError
        If the block is not a well-formed ``SignedData``.
    """
    try:
        tag, start, end = _der_element(block, 0)
        _expect(tag, _DER_SEQUENCE)
        content_info = _der_children(block, start, end)
        tag, _, start, _ = content_info[1]
        _expect(tag, _DER_EXPLICIT_0)
        tag, start, end = _der_element(block, start)
        _expect(tag, _DER_SEQUENCE)
        # signerInfos is the last field of SignedData
        tag, _, start, end = _der_children(block, start, end)[-1]
        _expect(tag, _DER_SET)

        identifiers = []
        for tag, _, info_start, info_end in _der_children(block, start, end):
            _expect(tag, _DER_SEQUENCE)
            sid_tag, _, sid_start, sid_end = _der_children(block, info_start, info_end)[1]
            if sid_tag == _DER_SUBJECT_KEY_ID:
                identifiers.append(SignerId(key_identifier=block[sid_start:sid_end]))
                continue
            _expect(sid_tag, _DER_SEQUENCE)
            issuer, serial = _der_children(block, sid_start, sid_end)[:2]
            _expect(serial[0], _DER_INTEGER)
            identifiers.append(SignerId(
                issuer=block[issuer[1]:issuer[3]],
                serial=int.from_bytes(block[serial[2]:serial[3]], "big", signed=True),
            ))
        return identifiers
    except IndexError as exc:
        raise ValueError("Truncated SignedData") from exc


def signer_first(
    block: bytes, certificates: list[x509.Certificate]
) -> list[x509.Certificate]:
    """Reorder *certificates* so each SignerInfo's certificate leads.

    The ``certificates`` set of a block is unordered and often lists a CA
    before the signer.  Certificates no SignerInfo points at keep their
    relative order after the signers.  If the SignerInfos cannot be read,
    *certificates* is returned unchanged.
    """
    try:
        identifiers = signer_identifiers(block)
    except ValueError as exc:
        logger.debug("Cannot read SignerInfo, keeping block order: %s", exc)
        return list(certificates)

    signers: list[x509.Certificate] = []
    for identifier in identifiers:
        for certificate in certificates:
            if certificate not in signers and identifier.matches(certificate):
                signers.append(certificate)
                break
    return signers + [c for c in certificates if c not in signers]
