"""Job parameter access.

The job-parameter store is owned by the analysis manager; this engine only
reads parameters and registers result files to skip. ``MappingJobParams`` is
the in-process implementation used by the CLI and tests; it is populated from
a YAML (or JSON) document of the form::

    JobParameters:
      DatasetName: QC_Shew_16_01_R1
      DatasetFolderName: QC_Shew_16_01_R1
      InputFolderName: SIC202101011234_Auto1234
      SharedResultsFolders: MSXML_Gen_1_1_1001, SIC202101011234_Auto1234
      TransferFolderPath: /mnt/transfer
      DatasetStoragePath: /mnt/storage/2021_1
      DatasetArchivePath: /mnt/archive/2021_1
    StepParameters:
      ToolName: MSGFPlus
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Protocol, TypeVar, runtime_checkable

import yaml

from retrieval_core.exceptions import YamlParseError

T = TypeVar("T")

JOB_PARAMETERS_SECTION = "JobParameters"
STEP_PARAMETERS_SECTION = "StepParameters"

JOB_PARAM_DATASET_NAME = "DatasetName"
JOB_PARAM_DATASET_FOLDER_NAME = "DatasetFolderName"
JOB_PARAM_INPUT_FOLDER_NAME = "InputFolderName"
JOB_PARAM_SHARED_RESULTS_FOLDERS = "SharedResultsFolders"
JOB_PARAM_TRANSFER_FOLDER_PATH = "TransferFolderPath"
JOB_PARAM_DATASET_STORAGE_PATH = "DatasetStoragePath"
JOB_PARAM_DATASET_ARCHIVE_PATH = "DatasetArchivePath"
JOB_PARAM_DATA_PACKAGE_PATH = "DataPackagePath"
JOB_PARAM_TOOL_NAME = "ToolName"

AGGREGATION_JOB_DATASET = "Aggregation"

_TRUE_VALUES = {"true", "yes", "1", "y", "t"}
_FALSE_VALUES = {"false", "no", "0", "n", "f", ""}


@runtime_checkable
class JobParams(Protocol):
    def get_param(self, name: str, default: str = "") -> str: ...

    def get_job_parameter(self, name: str, default: T) -> T: ...

    def add_result_file_to_skip(self, file_name: str) -> None: ...


def _coerce(value: Any, default: T) -> T:
    """Convert a stored parameter to the type of ``default``."""
    if isinstance(default, bool):
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True  # type: ignore[return-value]
        if text in _FALSE_VALUES:
            return False  # type: ignore[return-value]
        return default
    if isinstance(default, int):
        try:
            return int(str(value).strip())  # type: ignore[return-value]
        except ValueError:
            return default
    if isinstance(default, float):
        try:
            return float(str(value).strip())  # type: ignore[return-value]
        except ValueError:
            return default
    return str(value)  # type: ignore[return-value]


class MappingJobParams:
    """JobParams over nested section dicts (section name -> {param: value}).

    Lookups without a section search every section, first match wins, in the
    order the sections were defined.
    """

    def __init__(self, sections: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._sections: dict[str, dict[str, Any]] = {
            str(name): dict(values or {}) for name, values in (sections or {}).items()
        }
        self.result_files_to_skip: list[str] = []

    @classmethod
    def from_file(cls, path: Path) -> MappingJobParams:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise YamlParseError(
                f"Failed to parse job parameters {path}: {exc}", context={"path": str(path)}
            ) from exc
        if not isinstance(data, dict):
            raise YamlParseError(
                f"Job parameter file {path} must contain a mapping of sections",
                context={"path": str(path)},
            )
        return cls(data)

    def _lookup(self, name: str, section: str | None) -> Any:
        if section is not None:
            return self._sections.get(section, {}).get(name)
        for values in self._sections.values():
            if name in values:
                return values[name]
        return None

    def get_param(self, name: str, default: str = "", *, section: str | None = None) -> str:
        value = self._lookup(name, section)
        if value is None:
            return default
        return str(value)

    def get_job_parameter(self, name: str, default: T, *, section: str | None = None) -> T:
        value = self._lookup(name, section)
        if value is None:
            return default
        return _coerce(value, default)

    def set_param(self, section: str, name: str, value: Any) -> None:
        self._sections.setdefault(section, {})[name] = value

    def add_result_file_to_skip(self, file_name: str) -> None:
        if file_name and file_name not in self.result_files_to_skip:
            self.result_files_to_skip.append(file_name)


def get_dataset_name(job_params: JobParams) -> str:
    return job_params.get_param(JOB_PARAM_DATASET_NAME)
