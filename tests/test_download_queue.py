"""Tests for the archive download queue."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from retrieval_core.archive.client import ArchiveClient
from retrieval_core.archive.download_queue import DownloadQueue
from retrieval_core.archive.models import DownloadLayout
from retrieval_core.tiers import ARCHIVE_PATH_FLAG, append_archive_file_id


def _zip_bytes(members: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_STORED) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def client(fake_transport, make_ref, reporter) -> ArchiveClient:
    fake_transport.files = [
        make_ref(1, "SIC_1/a.txt"),
        make_ref(2, "SIC_1/b.txt"),
        make_ref(3, "c.txt"),
    ]
    archive_client = ArchiveClient(fake_transport, reporter)
    archive_client.query("*", "", "QC_Shew_16_01", recurse=True)
    return archive_client


class TestEnqueue:
    def test_enqueue_is_idempotent_per_file_id(self, client) -> None:
        queue = DownloadQueue(client)
        ref = client.get_cached_file_info(1)
        assert queue.enqueue(ref) is True
        assert queue.enqueue(ref, unzip_required=True) is False
        assert len(queue) == 1
        assert 1 in queue
        assert queue.entries[0].unzip_required is False

    def test_enqueue_encoded_path(self, client) -> None:
        queue = DownloadQueue(client)
        encoded = append_archive_file_id(ARCHIVE_PATH_FLAG + "/QC_Shew_16_01/SIC_1/b.txt", 2)
        assert queue.enqueue_encoded_path(encoded, unzip_required=True) is True
        assert queue.entries[0].ref.relative_path == "SIC_1/b.txt"
        assert queue.entries[0].unzip_required is True

    def test_path_without_file_id_is_rejected(self, client, reporter) -> None:
        queue = DownloadQueue(client, reporter)
        assert queue.enqueue_encoded_path(ARCHIVE_PATH_FLAG + "/QC_Shew_16_01/a.txt") is False
        assert "Archive file id not found" in reporter.at("error")[-1]
        assert len(queue) == 0

    def test_unknown_file_id_is_rejected(self, client, reporter) -> None:
        queue = DownloadQueue(client, reporter)
        encoded = append_archive_file_id(ARCHIVE_PATH_FLAG + "/QC_Shew_16_01/z.txt", 999)
        assert queue.enqueue_encoded_path(encoded) is False
        assert "has not been found by a previous query" in reporter.at("error")[-1]

    def test_clear(self, client) -> None:
        queue = DownloadQueue(client)
        queue.enqueue(client.get_cached_file_info(1))
        queue.clear()
        assert len(queue) == 0


class TestFlush:
    def test_empty_queue_is_noop(self, client, tmp_path: Path) -> None:
        result = DownloadQueue(client).flush(tmp_path)
        assert result.is_noop
        assert bool(result) is True

    def test_downloads_everything_flat(self, client, fake_transport, reporter, tmp_path: Path) -> None:
        queue = DownloadQueue(client, reporter)
        for file_id in (1, 2, 3):
            queue.enqueue(client.get_cached_file_info(file_id))

        result = queue.flush(tmp_path)

        assert result.is_ok
        assert [p.name for p in result.value] == ["a.txt", "b.txt", "c.txt"]
        assert (tmp_path / "a.txt").read_bytes() == b"archived a.txt"
        assert len(queue) == 0
        assert sorted(queue.downloaded_files) == [1, 2, 3]
        assert fake_transport.download_calls == [1, 2, 3]
        assert len(reporter.at("progress")) == 3

    def test_dataset_relative_layout(self, client, tmp_path: Path) -> None:
        queue = DownloadQueue(client)
        queue.enqueue(client.get_cached_file_info(1))
        queue.enqueue(client.get_cached_file_info(3))

        result = queue.flush(tmp_path, DownloadLayout.DATASET_RELATIVE_PATH)

        assert result.value == [
            tmp_path / "QC_Shew_16_01" / "SIC_1" / "a.txt",
            tmp_path / "QC_Shew_16_01" / "c.txt",
        ]

    def test_dataset_layout(self, client, tmp_path: Path) -> None:
        queue = DownloadQueue(client)
        queue.enqueue(client.get_cached_file_info(1))
        result = queue.flush(tmp_path, DownloadLayout.DATASET)
        assert result.value == [tmp_path / "QC_Shew_16_01" / "a.txt"]

    def test_first_failure_aborts_without_rollback(
        self, client, fake_transport, reporter, tmp_path: Path
    ) -> None:
        fake_transport.fail_downloads = {2}
        queue = DownloadQueue(client, reporter)
        for file_id in (1, 2, 3):
            queue.enqueue(client.get_cached_file_info(file_id))

        result = queue.flush(tmp_path)

        assert result.is_err
        assert result.error == "download_failed"
        assert result.extras == {"file_id": 2, "downloaded": 1}
        assert (tmp_path / "a.txt").exists()
        assert not (tmp_path / "c.txt").exists()
        assert fake_transport.download_calls == [1, 2]
        assert [entry.ref.file_id for entry in queue.entries] == [2, 3]
        assert reporter.at("error")

    def test_retry_after_failure_only_fetches_pending(
        self, client, fake_transport, tmp_path: Path
    ) -> None:
        fake_transport.fail_downloads = {2}
        queue = DownloadQueue(client)
        for file_id in (1, 2):
            queue.enqueue(client.get_cached_file_info(file_id))
        queue.flush(tmp_path)

        fake_transport.fail_downloads = set()
        result = queue.flush(tmp_path)

        assert result.is_ok
        assert fake_transport.download_calls == [1, 2, 2]

    def test_unzip_required(self, fake_transport, make_ref, tmp_path: Path) -> None:
        fake_transport.files = [make_ref(8, "results.zip")]
        fake_transport.payloads = {8: _zip_bytes({"inner/psm.txt": b"PSM data"})}
        client = ArchiveClient(fake_transport)
        client.query("results.zip", "", "QC_Shew_16_01")
        queue = DownloadQueue(client)
        queue.enqueue(client.get_cached_file_info(8), unzip_required=True)

        result = queue.flush(tmp_path)

        assert result.is_ok
        assert (tmp_path / "inner" / "psm.txt").read_bytes() == b"PSM data"
        assert queue.most_recent_unzipped_files == [("psm.txt", "inner/psm.txt")]
        assert result.extras["unzipped"] == [("psm.txt", "inner/psm.txt")]

    def test_corrupt_zip_member_returns_err(
        self, fake_transport, make_ref, reporter, tmp_path: Path
    ) -> None:
        payload = _zip_bytes({"inner.txt": b"PSM data"})
        offset = payload.index(b"PSM data")
        corrupt = payload[:offset] + b"X" + payload[offset + 1 :]
        fake_transport.files = [make_ref(9, "results.zip")]
        fake_transport.payloads = {9: corrupt}
        client = ArchiveClient(fake_transport, reporter)
        client.query("results.zip", "", "QC_Shew_16_01")
        queue = DownloadQueue(client, reporter)
        queue.enqueue(client.get_cached_file_info(9), unzip_required=True)

        result = queue.flush(tmp_path)

        assert result.is_err
        assert result.error == "download_failed"
        assert "Corrupt member inner.txt" in result.message
        assert not (tmp_path / "inner.txt").exists()
        assert [entry.ref.file_id for entry in queue.entries] == [9]
        assert reporter.at("error")
