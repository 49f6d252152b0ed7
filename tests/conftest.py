"""
Shared pytest fixtures for retrieval tests.

Provides:
- a deterministic clock for the archive circuit breaker
- a reporter that records every message
- an in-memory archive transport
- job parameter factories
- a CDTA text builder
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import pytest

SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if SRC_ROOT.is_dir():
    sys.path.insert(0, str(SRC_ROOT))

from retrieval_core.archive.models import ArchivedFileRef  # noqa: E402
from retrieval_core.archive.transport import filter_archive_files  # noqa: E402
from retrieval_core.exceptions import ArchiveConnectivityError  # noqa: E402
from retrieval_core.job_params import (  # noqa: E402
    JOB_PARAMETERS_SECTION,
    STEP_PARAMETERS_SECTION,
    MappingJobParams,
)


class DeterministicClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.time = start
        self.sleep_calls: list[float] = []

    def __call__(self) -> float:
        return self.time

    def advance(self, seconds: float) -> None:
        self.time += seconds

    def sleep(self, seconds: float) -> None:
        self.sleep_calls.append(seconds)
        self.advance(seconds)


class RecordingReporter:
    """StatusReporter that keeps (level, message) pairs."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def _record(self, level: str, message: str) -> None:
        self.messages.append((level, message))

    def debug(self, message: str) -> None:
        self._record("debug", message)

    def status(self, message: str) -> None:
        self._record("status", message)

    def warning(self, message: str) -> None:
        self._record("warning", message)

    def error(self, message: str, exc: BaseException | None = None) -> None:
        self._record("error", message)

    def progress(self, message: str, percent_complete: float) -> None:
        self._record("progress", message)

    def at(self, level: str) -> list[str]:
        return [message for lvl, message in self.messages if lvl == level]


class FakeArchiveTransport:
    """In-memory archive: files per dataset, download payloads by file id."""

    def __init__(self, files: Iterable[ArchivedFileRef] = (), payloads: dict[int, bytes] | None = None):
        self.files = list(files)
        self.payloads = dict(payloads or {})
        self.find_calls: list[tuple[str, str, str, bool]] = []
        self.download_calls: list[int] = []
        self.offline = False
        self.fail_downloads: set[int] = set()

    def find_files(
        self, file_name: str, subdirectory: str, dataset: str, recurse: bool
    ) -> list[ArchivedFileRef]:
        self.find_calls.append((file_name, subdirectory, dataset, recurse))
        if self.offline:
            raise ArchiveConnectivityError("connection refused")
        in_dataset = [ref for ref in self.files if ref.dataset == dataset]
        return filter_archive_files(in_dataset, file_name, subdirectory, recurse)

    def download_file(self, ref: ArchivedFileRef, destination: Path) -> Path:
        self.download_calls.append(ref.file_id)
        if ref.file_id in self.fail_downloads:
            raise ArchiveConnectivityError(f"download of {ref.file_id} interrupted")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payloads.get(ref.file_id, b"archived " + ref.filename.encode()))
        return destination


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """A clock that advances only when explicitly told to."""
    return DeterministicClock()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def fake_transport() -> FakeArchiveTransport:
    return FakeArchiveTransport()


@pytest.fixture
def make_ref() -> Callable[..., ArchivedFileRef]:
    def _make(
        file_id: int,
        relative_path: str,
        dataset: str = "QC_Shew_16_01",
        transaction_id: int = 1,
        **kwargs: Any,
    ) -> ArchivedFileRef:
        return ArchivedFileRef(
            file_id=file_id,
            dataset=dataset,
            relative_path=relative_path,
            transaction_id=transaction_id,
            **kwargs,
        )

    return _make


@pytest.fixture
def storage_layout(tmp_path: Path) -> dict[str, Path]:
    """Empty transfer, storage, long-term archive and work directories."""
    layout = {
        "transfer": tmp_path / "transfer",
        "storage": tmp_path / "storage",
        "archive": tmp_path / "lt_archive",
        "work": tmp_path / "work",
    }
    for path in layout.values():
        path.mkdir()
    return layout


@pytest.fixture
def job_params_factory(storage_layout: dict[str, Path]) -> Callable[..., MappingJobParams]:
    def _make(**overrides: Any) -> MappingJobParams:
        job = {
            "DatasetName": "QC_Shew_16_01",
            "DatasetFolderName": "QC_Shew_16_01",
            "InputFolderName": "SIC_1",
            "SharedResultsFolders": "",
            "TransferFolderPath": str(storage_layout["transfer"]),
            "DatasetStoragePath": str(storage_layout["storage"]),
            "DatasetArchivePath": str(storage_layout["archive"]),
        }
        step = {"ToolName": overrides.pop("ToolName", "MSGFPlus")}
        job.update(overrides)
        return MappingJobParams({JOB_PARAMETERS_SECTION: job, STEP_PARAMETERS_SECTION: step})

    return _make


def build_spectrum(scan: int, ion_count: int, *, charge: int = 2, tags: bool = True) -> str:
    header = f'=================================== "QC_Shew.{scan:04d}.{scan:04d}.{charge}.dta" =================================='
    parent = f"{1000 + scan}.12345 {charge}"
    if tags:
        parent += f"   scan={scan} cs={charge}"
    ions = [f"{100 + i}.5 {10 * (i + 1)}.0" for i in range(ion_count)]
    return "\n".join([header, parent, *ions]) + "\n\n"


@pytest.fixture
def cdta_builder() -> Callable[..., str]:
    """Build CDTA text from a list of per-spectrum ion counts."""

    def _build(ion_counts: Iterable[int], *, tags: bool = True) -> str:
        return "".join(
            build_spectrum(index + 1, count, tags=tags) for index, count in enumerate(ion_counts)
        )

    return _build


@pytest.fixture
def spectrum_builder() -> Callable[..., str]:
    """Build the text of a single spectrum."""
    return build_spectrum
