"""Tests for the HTTP archive transport and its client-side filters."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

from retrieval_core.archive.client import ArchiveClient
from retrieval_core.archive.models import ArchivedFileRef
from retrieval_core.archive.transport import (
    TOKEN_HEADER,
    HttpArchiveTransport,
    filter_archive_files,
)
from retrieval_core.exceptions import ArchiveConnectivityError, ArchiveError
from retrieval_core.secrets import SecretStr


def _ref(file_id: int, relative_path: str, transaction_id: int = 1, **kwargs) -> ArchivedFileRef:
    return ArchivedFileRef(file_id, "DS", relative_path, transaction_id, **kwargs)


def _session(response: Mock | None = None, side_effect: Exception | None = None) -> Mock:
    session = Mock()
    session.headers = {}
    if side_effect is not None:
        session.get.side_effect = side_effect
    else:
        session.get.return_value = response
    return session


def _json_response(payload) -> Mock:
    response = Mock()
    response.raise_for_status.return_value = None
    response.json.return_value = payload
    return response


class TestFilterArchiveFiles:
    refs = [
        _ref(1, "a_syn.txt"),
        _ref(2, "SIC_1/a_syn.txt"),
        _ref(3, "SIC_1/deeper/a_syn.txt"),
        _ref(4, "SIC_1", is_directory=True),
        _ref(5, "SIC_2/B_SYN.TXT"),
    ]

    def test_root_only_without_recurse(self) -> None:
        found = filter_archive_files(self.refs, "*_syn.txt", "", False)
        assert [r.file_id for r in found] == [1]

    def test_recurse_from_root(self) -> None:
        found = filter_archive_files(self.refs, "*_syn.txt", "", True)
        assert [r.file_id for r in found] == [1, 2, 3, 5]

    def test_subdirectory_wildcard(self) -> None:
        found = filter_archive_files(self.refs, "*", "SIC_*", False)
        assert [r.file_id for r in found] == [2, 5]

    def test_recurse_below_matching_directory(self) -> None:
        found = filter_archive_files(self.refs, "a_syn.txt", "SIC_1", True)
        assert [r.file_id for r in found] == [2, 3]

    def test_case_insensitive_names(self) -> None:
        found = filter_archive_files(self.refs, "b_syn.txt", "sic_2", False)
        assert [r.file_id for r in found] == [5]

    def test_newest_transaction_wins(self) -> None:
        refs = [_ref(10, "x.raw", transaction_id=5), _ref(11, "x.raw", transaction_id=9)]
        found = filter_archive_files(refs, "x.raw", "", False)
        assert [r.file_id for r in found] == [11]


class TestArchivedFileRef:
    def test_from_dict_with_name_and_subdir(self) -> None:
        ref = ArchivedFileRef.from_dict(
            {"id": "42", "dataset": "DS", "subdir": "SIC_1", "name": "x.txt", "size": "10"}
        )
        assert ref.file_id == 42
        assert ref.relative_path == "SIC_1/x.txt"
        assert ref.filename == "x.txt"
        assert ref.subdirectory == "SIC_1"
        assert ref.size == 10

    def test_from_dict_requires_id(self) -> None:
        with pytest.raises(ArchiveError):
            ArchivedFileRef.from_dict({"relative_path": "x.txt"})

    def test_from_dict_rejects_non_object_record(self) -> None:
        with pytest.raises(ArchiveError, match="expected an object, got str"):
            ArchivedFileRef.from_dict("SIC_1/a.txt")


class TestHttpArchiveTransport:
    def test_find_files_filters_listing(self) -> None:
        response = _json_response(
            {
                "files": [
                    {"id": 1, "relative_path": "SIC_1/x_syn.txt", "transaction_id": 3},
                    {"id": 2, "relative_path": "SIC_1/x_fht.txt", "transaction_id": 3},
                ]
            }
        )
        session = _session(response)
        transport = HttpArchiveTransport("https://archive.example.org/api/", session=session)

        found = transport.find_files("*_syn.txt", "SIC_1", "QC_Shew", False)

        assert [(r.file_id, r.dataset) for r in found] == [(1, "QC_Shew")]
        args, kwargs = session.get.call_args
        assert args[0] == "https://archive.example.org/api/files"
        assert kwargs["params"] == {"dataset": "QC_Shew"}

    def test_accepts_bare_list(self) -> None:
        session = _session(_json_response([{"id": 5, "dataset": "DS", "relative_path": "a.txt"}]))
        transport = HttpArchiveTransport("https://archive", session=session)
        assert [r.file_id for r in transport.list_dataset_files("DS")] == [5]

    def test_listing_of_bare_strings_is_archive_error(self) -> None:
        transport = HttpArchiveTransport(
            "https://archive", session=_session(_json_response({"files": ["SIC_1/a.txt"]}))
        )
        with pytest.raises(ArchiveError):
            transport.list_dataset_files("DS")

    def test_malformed_listing_fails_open_through_client(self, reporter) -> None:
        transport = HttpArchiveTransport(
            "https://archive", session=_session(_json_response({"files": ["SIC_1/a.txt"]}))
        )
        client = ArchiveClient(transport, reporter)

        assert client.query("a.txt", "SIC_1", "QC_Shew_16_01") == []
        assert reporter.at("error") == ["Error searching the archive for a.txt in dataset QC_Shew_16_01"]
        assert client.breaker.state.consecutive_failures == 0

    def test_invalid_json_is_archive_error(self) -> None:
        response = Mock()
        response.raise_for_status.return_value = None
        response.json.side_effect = ValueError("no JSON")
        transport = HttpArchiveTransport("https://archive", session=_session(response))
        with pytest.raises(ArchiveError):
            transport.list_dataset_files("DS")

    def test_token_header(self) -> None:
        session = _session(_json_response({"files": []}))
        HttpArchiveTransport("https://archive", api_token=SecretStr("s3cret"), session=session)
        assert session.headers[TOKEN_HEADER] == "s3cret"

    def test_no_token_no_header(self) -> None:
        session = _session(_json_response({"files": []}))
        HttpArchiveTransport("https://archive", session=session)
        assert TOKEN_HEADER not in session.headers

    def test_connection_error_is_connectivity_error(self) -> None:
        session = _session(side_effect=requests.exceptions.ConnectionError("refused"))
        transport = HttpArchiveTransport("https://archive", session=session, max_attempts=1)
        with pytest.raises(ArchiveConnectivityError):
            transport.find_files("x", "", "DS", False)

    def test_http_404_is_plain_archive_error(self) -> None:
        error_response = Mock()
        error_response.status_code = 404
        response = Mock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=error_response)
        transport = HttpArchiveTransport("https://archive", session=_session(response), max_attempts=3)

        with pytest.raises(ArchiveError) as excinfo:
            transport.find_files("x", "", "DS", False)

        assert not isinstance(excinfo.value, ArchiveConnectivityError)
        assert response.raise_for_status.call_count == 1

    def test_download_streams_to_destination(self, tmp_path: Path) -> None:
        response = Mock()
        response.raise_for_status.return_value = None
        response.iter_content.return_value = [b"abc", b"", b"def"]
        session = _session(response)
        transport = HttpArchiveTransport("https://archive", session=session)
        destination = tmp_path / "out" / "x.raw"

        path = transport.download_file(_ref(7, "x.raw", size=6), destination)

        assert path == destination
        assert destination.read_bytes() == b"abcdef"
        assert not (tmp_path / "out" / "x.raw.part").exists()
        assert session.get.call_args[0][0] == "https://archive/download/7"
        response.close.assert_called_once()

    def test_download_size_mismatch(self, tmp_path: Path) -> None:
        response = Mock()
        response.raise_for_status.return_value = None
        response.iter_content.return_value = [b"abc"]
        transport = HttpArchiveTransport("https://archive", session=_session(response))
        destination = tmp_path / "x.raw"

        with pytest.raises(ArchiveError):
            transport.download_file(_ref(7, "x.raw", size=10), destination)
        assert not destination.exists()
        assert not (tmp_path / "x.raw.part").exists()
