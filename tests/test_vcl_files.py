"""Tests for VCL directory synchronization."""

import pytest

from models import VCLFileError
from vcl_files import get_current_files, sync_files


class TestGetCurrentFiles:
    """Tests for get_current_files function."""

    def test_reads_vcl_files_only(self, tmp_path):
        (tmp_path / "entrypoint.vcl").write_text("vcl 4.1;")
        (tmp_path / "secret").write_text("s3cr3t")
        (tmp_path / "nested.vcl").mkdir()

        assert get_current_files(tmp_path) == {"entrypoint.vcl": "vcl 4.1;"}

    def test_missing_directory(self, tmp_path):
        with pytest.raises(VCLFileError):
            get_current_files(tmp_path / "missing")


class TestSyncFiles:
    """Tests for sync_files function."""

    def test_converges_directory(self, tmp_path):
        (tmp_path / "old.vcl").write_text("old")
        (tmp_path / "changed.vcl").write_text("before")
        (tmp_path / "same.vcl").write_text("same")
        current = get_current_files(tmp_path)
        desired = {"changed.vcl": "after", "same.vcl": "same", "new.vcl": "new"}

        touched = sync_files(tmp_path, current, desired)

        assert touched is True
        assert get_current_files(tmp_path) == desired

    def test_only_one_file_changed(self, tmp_path):
        (tmp_path / "a.vcl").write_text("a")
        current = get_current_files(tmp_path)

        assert sync_files(tmp_path, current, {"a.vcl": "a", "b.vcl": "b"}) is True
        assert (tmp_path / "b.vcl").read_text() == "b"

    def test_no_changes(self, tmp_path):
        (tmp_path / "a.vcl").write_text("a")
        before = (tmp_path / "a.vcl").stat().st_mtime_ns

        assert sync_files(tmp_path, {"a.vcl": "a"}, {"a.vcl": "a"}) is False
        assert (tmp_path / "a.vcl").stat().st_mtime_ns == before

    def test_non_vcl_files_untouched(self, tmp_path):
        (tmp_path / "secret").write_text("s3cr3t")

        sync_files(tmp_path, get_current_files(tmp_path), {"a.vcl": "a"})

        assert (tmp_path / "secret").read_text() == "s3cr3t"

    def test_write_failure(self, tmp_path):
        with pytest.raises(VCLFileError):
            sync_files(tmp_path / "missing", {}, {"a.vcl": "a"})
