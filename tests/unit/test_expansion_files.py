"""Tests for ExpansionFileResolver: matching, lexical ordering, eligibility."""

from __future__ import annotations

import hashlib

from apkintrospect.core.expansion_files import ExpansionFileResolver, obb_dir

PKG = "org.example.game"


def _populate(storage_root, *names: str, package: str = PKG):
    directory = obb_dir(storage_root, package)
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_bytes(f"contents of {name}".encode())
    return directory


class TestResolve:
    def test_picks_latest_eligible_per_kind(self, storage_root):
        _populate(storage_root, f"main.1.{PKG}.obb", f"main.2.{PKG}.obb", f"patch.1.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 2)
        assert resolved.main.filename == f"main.2.{PKG}.obb"
        assert resolved.patch.filename == f"patch.1.{PKG}.obb"

    def test_skips_files_newer_than_installed(self, storage_root):
        _populate(storage_root, f"main.1.{PKG}.obb", f"main.3.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 2)
        assert resolved.main.filename == f"main.1.{PKG}.obb"
        assert resolved.patch is None

    def test_hash_uses_configured_algorithm(self, storage_root):
        directory = _populate(storage_root, f"main.5.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root, hash_algorithm="md5").resolve(PKG, 5)
        expected = hashlib.md5((directory / f"main.5.{PKG}.obb").read_bytes()).hexdigest()
        assert resolved.main.content_hash.algorithm == "md5"
        assert resolved.main.content_hash.digest == expected

    def test_default_hash_is_sha256(self, storage_root):
        directory = _populate(storage_root, f"patch.1.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 1)
        expected = hashlib.sha256((directory / f"patch.1.{PKG}.obb").read_bytes()).hexdigest()
        assert resolved.patch.content_hash.algorithm == "sha256"
        assert resolved.patch.content_hash.digest == expected

    def test_lexical_ordering_is_preserved(self, storage_root):
        # "main.10" sorts before "main.9", so 9 wins even though 10 is newer.
        _populate(storage_root, f"main.9.{PKG}.obb", f"main.10.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main.filename == f"main.9.{PKG}.obb"


class TestNothingFound:
    def test_missing_directory(self, storage_root):
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main is None and resolved.patch is None

    def test_missing_storage_root(self, tmp_path):
        resolved = ExpansionFileResolver(tmp_path / "nowhere").resolve(PKG, 10)
        assert resolved.main is None and resolved.patch is None

    def test_no_eligible_version(self, storage_root):
        _populate(storage_root, f"main.7.{PKG}.obb", f"patch.8.{PKG}.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 6)
        assert resolved.main is None and resolved.patch is None

    def test_ignores_other_packages_and_names(self, storage_root):
        _populate(
            storage_root,
            f"main.1.{PKG}.other.obb",
            f"main.1.org.example.gamex.obb",
            f"extra.1.{PKG}.obb",
            f"main.x.{PKG}.obb",
            f"main.1.{PKG}.obb.tmp",
        )
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main is None and resolved.patch is None

    def test_package_dots_are_literal(self, storage_root):
        _populate(storage_root, "main.1.orgXexampleXgame.obb")
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main is None

    def test_directories_are_ignored(self, storage_root):
        directory = _populate(storage_root)
        (directory / f"main.1.{PKG}.obb").mkdir()
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main is None

    def test_unreadable_patch_keeps_main(self, storage_root, monkeypatch):
        from apkintrospect.core import expansion_files

        _populate(storage_root, f"main.1.{PKG}.obb", f"patch.1.{PKG}.obb")
        real_hash_file = expansion_files.hash_file

        def hash_file(path, algorithm):
            if path.name.startswith("patch."):
                raise PermissionError(13, "Permission denied", str(path))
            return real_hash_file(path, algorithm)

        monkeypatch.setattr(expansion_files, "hash_file", hash_file)
        resolved = ExpansionFileResolver(storage_root).resolve(PKG, 10)
        assert resolved.main.filename == f"main.1.{PKG}.obb"
        assert resolved.patch is None
