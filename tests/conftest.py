"""Shared test fixtures for apkintrospect.

Provides a throwaway signing identity, a compiled-manifest encoder, and an
APK factory that writes JAR-signed archives the way build tools do
(``META-INF/MANIFEST.MF`` + ``CERT.SF`` + a PKCS#7 signature block).
"""

from __future__ import annotations

import struct
import zipfile
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import pkcs7
from cryptography.x509.oid import NameOID

from apkintrospect.core.axml import (
    ANDROID_ATTRIBUTE_NAMES,
    NO_INDEX,
    RES_STRING_POOL_TYPE,
    RES_XML_END_ELEMENT_TYPE,
    RES_XML_RESOURCE_MAP_TYPE,
    RES_XML_START_ELEMENT_TYPE,
    RES_XML_TYPE,
    TYPE_INT_DEC,
    TYPE_STRING,
    UTF8_FLAG,
)
from apkintrospect.models.package_info import InstalledPackageInfo

PACKAGE_ID = "org.example.app"

# ---------------------------------------------------------------------------
# Compiled manifest encoder
# ---------------------------------------------------------------------------

_ATTRIBUTE_IDS = {name: res_id for res_id, name in ANDROID_ATTRIBUTE_NAMES.items()}


def _chunk(chunk_type: int, header_size: int, body: bytes) -> bytes:
    return struct.pack("<HHI", chunk_type, header_size, 8 + len(body)) + body


def _string_pool(strings: list[str], utf8: bool) -> bytes:
    offsets = b""
    data = b""
    for s in strings:
        offsets += struct.pack("<I", len(data))
        if utf8:
            raw = s.encode("utf-8")
            data += bytes([len(s), len(raw)]) + raw + b"\x00"
        else:
            data += struct.pack("<H", len(s)) + s.encode("utf-16-le") + b"\x00\x00"
    data += b"\x00" * (-len(data) % 4)
    header_size = 28
    header = struct.pack(
        "<IIIII",
        len(strings),
        0,
        UTF8_FLAG if utf8 else 0,
        header_size + len(offsets),
        0,
    )
    return _chunk(RES_STRING_POOL_TYPE, header_size, header + offsets + data)


def encode_manifest(
    elements: list[tuple[str, dict[str, Any]]],
    *,
    utf8: bool = False,
    strip_attribute_names: bool = False,
) -> bytes:
    """Encode ``<manifest>`` with the given child elements as binary XML.

    Attribute values that are ints become ``TYPE_INT_DEC``; strings become
    ``TYPE_STRING``.  With *strip_attribute_names* the attribute name
    strings are blanked and only the resource map identifies them.
    """
    attr_names: list[str] = []
    for _, attrs in elements:
        for name in attrs:
            if name not in attr_names:
                attr_names.append(name)

    strings = [""] * len(attr_names) if strip_attribute_names else list(attr_names)

    def index_of(value: str) -> int:
        if value not in strings[len(attr_names):]:
            strings.append(value)
            return len(strings) - 1
        return strings.index(value, len(attr_names))

    body = b""
    line = 1
    nodes = [("manifest", {}, "start")]
    for tag, attrs in elements:
        nodes.append((tag, attrs, "start"))
        nodes.append((tag, attrs, "end"))
    nodes.append(("manifest", {}, "end"))

    for tag, attrs, which in nodes:
        name_idx = index_of(tag)
        node_header = struct.pack("<II", line, NO_INDEX)
        line += 1
        if which == "end":
            ext = struct.pack("<II", NO_INDEX, name_idx)
            body += _chunk(RES_XML_END_ELEMENT_TYPE, 16, node_header + ext)
            continue
        attr_bytes = b""
        for name, value in attrs.items():
            attr_idx = attr_names.index(name)
            if isinstance(value, int):
                raw_idx, data_type, data = NO_INDEX, TYPE_INT_DEC, value & 0xFFFFFFFF
            else:
                raw_idx = index_of(value)
                data_type, data = TYPE_STRING, raw_idx
            attr_bytes += struct.pack(
                "<IIIHBBI", NO_INDEX, attr_idx, raw_idx, 8, 0, data_type, data
            )
        ext = struct.pack("<IIHHHHHH", NO_INDEX, name_idx, 20, 20, len(attrs), 0, 0, 0)
        body += _chunk(RES_XML_START_ELEMENT_TYPE, 16, node_header + ext + attr_bytes)

    resource_ids = [_ATTRIBUTE_IDS.get(name, 0) for name in attr_names]
    resource_map = _chunk(
        RES_XML_RESOURCE_MAP_TYPE,
        8,
        struct.pack(f"<{len(resource_ids)}I", *resource_ids),
    )
    return _chunk(RES_XML_TYPE, 8, _string_pool(strings, utf8) + resource_map + body)


@pytest.fixture
def make_manifest() -> Callable[..., bytes]:
    """Factory fixture: encode a compiled manifest."""
    return encode_manifest


# ---------------------------------------------------------------------------
# Signing identity and APK factory
# ---------------------------------------------------------------------------


def _issue(
    common_name: str,
    issuer: tuple[x509.Certificate, ec.EllipticCurvePrivateKey] | None = None,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    issuer_cert, issuer_key = issuer if issuer else (None, key)
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(issuer_cert.subject if issuer_cert else name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=3650))
        .sign(issuer_key, hashes.SHA256())
    )
    return cert, key


def _self_signed(common_name: str) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    return _issue(common_name)


@pytest.fixture(scope="session")
def signing_identity() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """A self-signed certificate and its key, shared across the session."""
    return _self_signed("apkintrospect test signer")


@pytest.fixture(scope="session")
def other_signing_identity() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """A second, unrelated signing identity."""
    return _self_signed("someone else")


@pytest.fixture(scope="session")
def certificate_authority() -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """A self-signed CA that issues ``chained_identity``."""
    return _self_signed("apkintrospect test ca")


@pytest.fixture(scope="session")
def chained_identity(certificate_authority) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """A signing identity whose certificate is issued by ``certificate_authority``."""
    return _issue("apkintrospect chained signer", certificate_authority)


@pytest.fixture
def signer_der(signing_identity) -> bytes:
    cert, _ = signing_identity
    return cert.public_bytes(serialization.Encoding.DER)


@pytest.fixture
def make_apk(
    tmp_path: Path, signing_identity, make_manifest
) -> Callable[..., Path]:
    """Factory fixture: write a JAR-signed APK and return its path.

    Parameters of the returned callable
    -----------------------------------
    name:
        File name inside ``tmp_path``.
    manifest:
        Compiled manifest bytes; ``None`` omits ``AndroidManifest.xml``.
        Defaults to a manifest declaring ``uses-sdk`` 21/30.
    entries:
        Extra ``{path: bytes}`` entries.
    signed:
        Whether to add the ``META-INF`` signature files.
    unsigned_entries:
        Entries left out of ``MANIFEST.MF``.
    identity:
        ``(certificate, key)`` to sign with.
    chain:
        Extra certificates placed in the signature block, such as the
        signer's CA.
    """

    def _factory(
        name: str = "app.apk",
        manifest: bytes | None = b"",
        entries: dict[str, bytes] | None = None,
        *,
        signed: bool = True,
        unsigned_entries: tuple[str, ...] = (),
        identity: tuple[x509.Certificate, Any] | None = None,
        chain: tuple[x509.Certificate, ...] = (),
    ) -> Path:
        if manifest == b"":
            manifest = make_manifest(
                [("uses-sdk", {"minSdkVersion": 21, "targetSdkVersion": 30})]
            )
        contents: dict[str, bytes] = {}
        if manifest is not None:
            contents["AndroidManifest.xml"] = manifest
        contents["classes.dex"] = b"dex\n035\x00"
        contents.update(entries or {})

        path = tmp_path / name
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            for entry_name, data in contents.items():
                zf.writestr(entry_name, data)
            if signed:
                cert, key = identity or signing_identity
                mf = "Manifest-Version: 1.0\r\nCreated-By: apkintrospect tests\r\n\r\n"
                for entry_name in contents:
                    if entry_name not in unsigned_entries:
                        mf += f"Name: {entry_name}\r\nSHA-256-Digest: x\r\n\r\n"
                sf = b"Signature-Version: 1.0\r\n\r\n"
                builder = (
                    pkcs7.PKCS7SignatureBuilder()
                    .set_data(sf)
                    .add_signer(cert, key, hashes.SHA256())
                )
                for extra in chain:
                    builder = builder.add_certificate(extra)
                block = builder.sign(
                    serialization.Encoding.DER, [pkcs7.PKCS7Options.DetachedSignature]
                )
                zf.writestr("META-INF/MANIFEST.MF", mf)
                zf.writestr("META-INF/CERT.SF", sf)
                zf.writestr("META-INF/CERT.EC", block)
        return path

    return _factory


# Central directory record: flags at +8, compression at +10, name length
# at +28, name at +46.
_CENTRAL_HEADER_SIGNATURE = b"PK\x01\x02"


def patch_central_header(
    path: Path,
    entry_name: str,
    *,
    set_flags: int = 0,
    compress_type: int | None = None,
) -> None:
    """Rewrite *entry_name*'s central directory record in place."""
    data = bytearray(path.read_bytes())
    name = entry_name.encode("utf-8")
    offset = data.find(_CENTRAL_HEADER_SIGNATURE)
    while offset != -1:
        (name_length,) = struct.unpack_from("<H", data, offset + 28)
        if data[offset + 46:offset + 46 + name_length] == name:
            (flags,) = struct.unpack_from("<H", data, offset + 8)
            struct.pack_into("<H", data, offset + 8, flags | set_flags)
            if compress_type is not None:
                struct.pack_into("<H", data, offset + 10, compress_type)
            break
        offset = data.find(_CENTRAL_HEADER_SIGNATURE, offset + 4)
    else:
        raise KeyError(entry_name)
    path.write_bytes(bytes(data))


@pytest.fixture
def patch_entry_header() -> Callable[..., None]:
    """Factory fixture: mark an archive entry encrypted or change its compression."""
    return patch_central_header


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    """External storage root with an empty ``Android/obb`` tree."""
    root = tmp_path / "sdcard"
    (root / "Android" / "obb").mkdir(parents=True)
    return root


@pytest.fixture
def make_package_info() -> Callable[..., InstalledPackageInfo]:
    """Factory fixture: build an InstalledPackageInfo with sensible defaults."""

    def _factory(archive_path: Path, **overrides: Any) -> InstalledPackageInfo:
        defaults: dict[str, Any] = {
            "package_identifier": PACKAGE_ID,
            "label": "Example App",
            "version_name": "1.2",
            "version_code": 2,
            "requested_permissions": frozenset({"android.permission.INTERNET"}),
            "declared_features": ("android.hardware.camera",),
            "archive_path": archive_path,
            "installer_package": "org.fdroid.fdroid",
        }
        defaults.update(overrides)
        return InstalledPackageInfo(**defaults)

    return _factory
