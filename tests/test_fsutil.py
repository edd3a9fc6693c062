"""Test filesystem helpers: atomic writes, name safety, tree removal."""

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from card_store import fsutil
from card_store.fsutil import (
    atomic_write_bytes,
    remove_tree,
    safe_child,
    sanitize_display_name,
    unsafe_name_reason,
)


class TestAtomicWrites:

    def test_write_and_overwrite(self, tmp_path):
        target = tmp_path / "index.html"
        atomic_write_bytes(target, b"old")
        atomic_write_bytes(target, b"new")
        assert target.read_bytes() == b"new"

    def test_published_file_is_world_readable(self, tmp_path):
        target = tmp_path / "style.min.css"
        atomic_write_bytes(target, b"body{}")
        assert stat.S_IMODE(target.stat().st_mode) == 0o644

    def test_requires_existing_parent(self, tmp_path):
        """A write never recreates a removed bundle directory."""
        with pytest.raises(FileNotFoundError):
            atomic_write_bytes(tmp_path / "gone" / "index.html", b"x")
        assert not (tmp_path / "gone").exists()

    def test_no_partial_files_on_rename_failure(self, tmp_path):
        target = tmp_path / "index.html"
        target.write_bytes(b"original")

        with patch("os.replace", side_effect=OSError("Simulated rename failure")):
            with pytest.raises(OSError):
                atomic_write_bytes(target, b"replacement")

        assert target.read_bytes() == b"original"
        assert [p.name for p in tmp_path.iterdir()] == ["index.html"]

    def test_no_partial_files_on_write_failure(self, tmp_path):
        target = tmp_path / "logo.png"

        with patch("os.fsync", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                atomic_write_bytes(target, b"\x89PNG")

        assert list(tmp_path.iterdir()) == []

    def test_longest_component_name_is_writable(self, tmp_path):
        """The temp file name never grows with the target name."""
        target = tmp_path / ("n" * fsutil.MAX_NAME_BYTES)
        atomic_write_bytes(target, b"ok")
        assert target.read_bytes() == b"ok"
        assert [p.name for p in tmp_path.iterdir()] == [target.name]

    def test_directory_fsync_failure_is_tolerated(self, tmp_path):
        target = tmp_path / "index.html"
        real_open = os.open

        def no_dir_open(path, flags, *args):
            if Path(path) == tmp_path:
                raise OSError("directory fsync unsupported")
            return real_open(path, flags, *args)

        with patch.object(fsutil.os, "open", side_effect=no_dir_open):
            atomic_write_bytes(target, b"ok")
        assert target.read_bytes() == b"ok"


class TestNameSafety:

    @pytest.mark.parametrize("name", [
        "logo.png",
        "intro video.mp4",
        ".hidden",
        "Zoë's public key.asc",
    ])
    def test_safe_names(self, tmp_path, name):
        assert unsafe_name_reason(name) == ""
        assert safe_child(tmp_path, name) == tmp_path / name

    @pytest.mark.parametrize("name", [
        "",
        "   ",
        ".",
        "..",
        "../escape.png",
        "nested/file.png",
        "/etc/passwd",
        "..\\windows",
        "bad\x00name",
        "new\nline",
        "x" * 256,
    ])
    def test_unsafe_names(self, tmp_path, name):
        assert unsafe_name_reason(name)
        with pytest.raises(ValueError, match="Unsafe path"):
            safe_child(tmp_path, name)


class TestDisplayNameSanitizing:

    def test_plain_name_unchanged(self):
        assert sanitize_display_name("Jane Doe") == "Jane Doe"

    def test_separators_replaced(self):
        assert sanitize_display_name("AC/DC\\Band") == "AC-DC-Band"

    def test_control_characters_dropped(self):
        assert sanitize_display_name("Jane\x00\n\tDoe") == "JaneDoe"

    def test_leading_dots_stripped(self):
        assert sanitize_display_name("../../etc") == "-..-etc"
        assert sanitize_display_name("  .hidden ") == "hidden"

    def test_may_become_empty(self):
        assert sanitize_display_name("\x01\x02") == ""
        assert sanitize_display_name("...") == ""

    def test_truncated(self):
        assert len(sanitize_display_name("x" * 1000)) == fsutil.MAX_DISPLAY_NAME

    def test_truncated_by_bytes_without_splitting_characters(self):
        name = sanitize_display_name("\U0001F600" * 100)
        assert name == "\U0001F600" * 50
        assert len(name.encode("utf-8")) <= fsutil.MAX_DISPLAY_NAME
        assert sanitize_display_name("\u00e9" * 150) == "\u00e9" * 100


class TestRemoveTree:

    def test_removes_nested(self, tmp_path):
        root = tmp_path / "acme-corp"
        (root / "media").mkdir(parents=True)
        (root / "index.html").write_text("x")
        (root / "media" / "a.mp4").write_bytes(b"x")

        remove_tree(root)
        assert not root.exists()

    def test_tolerates_entries_vanishing(self, tmp_path):
        """A file disappearing mid-walk is not an error."""
        root = tmp_path / "acme-corp"
        root.mkdir()
        (root / "index.html").write_text("x")
        (root / "style.min.css").write_text("x")

        real_unlink = os.unlink

        def racing_unlink(path, *args, **kwargs):
            real_unlink(path, *args, **kwargs)
            raise FileNotFoundError(path)

        with patch("os.unlink", side_effect=racing_unlink):
            remove_tree(root)
        assert not root.exists()

    def test_other_errors_propagate(self, tmp_path):
        root = tmp_path / "acme-corp"
        root.mkdir()
        (root / "index.html").write_text("x")

        with patch("os.unlink", side_effect=PermissionError("read-only")):
            with pytest.raises(PermissionError):
                remove_tree(root)
