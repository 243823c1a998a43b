"""Tests for stale browser lock removal."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from whatsbot.lifecycle import lock_janitor
from whatsbot.lifecycle.lock_janitor import clean_locks


class TestCleanLocks:
    def test_removes_only_lock_markers(self, tmp_path: Path) -> None:
        (tmp_path / "SingletonLock").write_text("host-123")
        (tmp_path / "SingletonSocket").write_text("")
        (tmp_path / "Preferences").write_text("{}")

        removed = clean_locks(tmp_path)

        assert sorted(p.name for p in removed) == ["SingletonLock", "SingletonSocket"]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["Preferences"]

    def test_finds_locks_in_nested_profiles(self, tmp_path: Path) -> None:
        nested = tmp_path / "session" / "Default"
        nested.mkdir(parents=True)
        (nested / "SingletonCookie").write_text("")
        (nested / "Cookies").write_text("")

        removed = clean_locks(tmp_path)

        assert removed == [nested / "SingletonCookie"]
        assert (nested / "Cookies").exists()

    def test_creates_missing_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "auth" / "profile"

        assert clean_locks(target) == []
        assert target.is_dir()

    def test_removes_dangling_lock_symlink(self, tmp_path: Path) -> None:
        link = tmp_path / "SingletonLock"
        os.symlink(tmp_path / "gone-host-4242", link)

        removed = clean_locks(tmp_path)

        assert removed == [link]
        assert not os.path.lexists(link)

    def test_removes_lock_directory(self, tmp_path: Path) -> None:
        socket_dir = tmp_path / "SingletonSocket"
        socket_dir.mkdir()
        (socket_dir / "inner").write_text("")

        clean_locks(tmp_path)

        assert not socket_dir.exists()

    def test_does_not_follow_directory_symlinks(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "SingletonLock").write_text("")
        profile = tmp_path / "profile"
        profile.mkdir()
        os.symlink(outside, profile / "linked")

        clean_locks(profile)

        assert (outside / "SingletonLock").exists()

    def test_removal_failure_is_skipped(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        (tmp_path / "SingletonLock").write_text("")
        (tmp_path / "SingletonSocket").write_text("")

        def fail_on_lock(path: Path) -> None:
            if path.name == "SingletonLock":
                raise PermissionError("held by another user")
            path.unlink()

        monkeypatch.setattr(lock_janitor, "_remove", fail_on_lock)

        removed = clean_locks(tmp_path)

        assert [p.name for p in removed] == ["SingletonSocket"]
        assert (tmp_path / "SingletonLock").exists()
        assert "Could not remove lock" in caplog.text
