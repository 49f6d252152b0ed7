#!/usr/bin/env python3
"""Command line entry point: ``retrieval-core``.

    retrieval-core find --job-params job.yaml QC_Shew_16_01_R1_syn.txt
    retrieval-core retrieve --job-params job.yaml --settings settings.yaml --unzip "*.zip"
    retrieval-core hashcheck create /cache/QC_Shew.mzML.gz
    retrieval-core hashcheck validate /cache/QC_Shew.mzML.gz --recheck-days 1
    retrieval-core condense sparse work/QC_Shew_dta.txt
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from retrieval_core import condenser, hashcheck
from retrieval_core.archive.models import DownloadLayout
from retrieval_core.exceptions import RetrievalError
from retrieval_core.job_params import JOB_PARAM_DATASET_NAME, MappingJobParams
from retrieval_core.logging_config import LogContext, add_logging_args, configure_logging
from retrieval_core.resolver import Resolver
from retrieval_core.result import Result
from retrieval_core.settings import RetrieverSettings, load_settings

logger = logging.getLogger("retrieval_core.cli")

COMMAND_FIND = "find"
COMMAND_RETRIEVE = "retrieve"
COMMAND_HASHCHECK = "hashcheck"
COMMAND_CONDENSE = "condense"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="retrieval-core", description="Locate and retrieve job input files."
    )
    add_logging_args(parser)
    parser.add_argument("--settings", type=Path, default=None, help="Settings YAML file.")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        (COMMAND_FIND, "Report which tier holds a file."),
        (COMMAND_RETRIEVE, "Copy (or download) a file into the work directory."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--job-params", type=Path, required=True, help="Job parameter YAML/JSON file.")
        cmd.add_argument("--no-archive", action="store_true", help="Skip the archive tiers.")
        cmd.add_argument("file_name", help="File name; * and ? wildcards allowed.")
        if name == COMMAND_RETRIEVE:
            cmd.add_argument("--work-dir", type=Path, default=None, help="Override settings work_dir.")
            cmd.add_argument("--unzip", action="store_true", help="Unpack .zip/.gz files after retrieval.")
            cmd.add_argument(
                "--pointer-only",
                action="store_true",
                help="Write a _StoragePathInfo.txt pointer instead of copying.",
            )
            cmd.add_argument(
                "--layout",
                choices=[layout.value for layout in DownloadLayout],
                default=DownloadLayout.FLAT.value,
                help="Directory layout for archive downloads (default: flat).",
            )

    hc = sub.add_parser(COMMAND_HASHCHECK, help="Create or validate .hashcheck files.")
    hc_sub = hc.add_subparsers(dest="action", required=True)
    hc_create = hc_sub.add_parser("create", help="Write <file>.hashcheck.")
    hc_create.add_argument("path", type=Path)
    hc_create.add_argument("--no-hash", action="store_true", help="Record size and date only.")
    hc_create.add_argument("--hash-type", default=None, choices=list(hashcheck.SUPPORTED_HASH_TYPES))
    hc_validate = hc_sub.add_parser("validate", help="Check a file against its .hashcheck.")
    hc_validate.add_argument("path", type=Path)
    hc_validate.add_argument("--hashcheck", type=Path, default=None)
    hc_validate.add_argument(
        "--recheck-days",
        type=float,
        default=None,
        help="Skip hashing for records confirmed this recently (default: from settings).",
    )
    hc_validate.add_argument("--no-hash", action="store_true", help="Skip hashing.")
    hc_validate.add_argument("--ignore-date", action="store_true", help="Do not compare modification times.")

    cd = sub.add_parser(COMMAND_CONDENSE, help="Rewrite a _dta.txt file.")
    cd_sub = cd.add_subparsers(dest="action", required=True)
    cd_sparse = cd_sub.add_parser("sparse", help="Remove spectra with too few ions.")
    cd_sparse.add_argument("path", type=Path)
    cd_sparse.add_argument("--min-ions", type=int, default=None)
    cd_tags = cd_sub.add_parser("tags", help="Add missing scan= and cs= tags.")
    cd_tags.add_argument("path", type=Path)
    cd_tags.add_argument("--output", type=Path, default=None, help="Write here instead of replacing.")
    cd_size = cd_sub.add_parser("size", help="Condense zero-intensity runs in oversized files.")
    cd_size.add_argument("path", type=Path)
    cd_size.add_argument("--threshold", type=int, default=None, help="Size threshold in bytes.")
    return parser


def _run_find(
    args: argparse.Namespace, settings: RetrieverSettings, job_params: MappingJobParams
) -> int:
    resolver = Resolver.from_settings(job_params, settings)
    location = resolver.find(args.file_name, search_archive_tier=not args.no_archive)
    if location is None:
        return 1
    print(json.dumps({"tier": location.tier.name, "path": location.path_string}))
    return 0


def _run_retrieve(
    args: argparse.Namespace, settings: RetrieverSettings, job_params: MappingJobParams
) -> int:
    resolver = Resolver.from_settings(job_params, settings)
    if args.work_dir is not None:
        resolver.work_dir = args.work_dir
    resolver.work_dir.mkdir(parents=True, exist_ok=True)
    if not resolver.find_and_retrieve(
        args.file_name,
        unzip=args.unzip,
        search_archive_tier=not args.no_archive,
        create_storage_path_info_only=args.pointer_only,
    ):
        return 1
    if not resolver.process_download_queue(DownloadLayout(args.layout)):
        return 1
    return 0


def _run_hashcheck(args: argparse.Namespace, settings: RetrieverSettings) -> int:
    hash_type = getattr(args, "hash_type", None) or settings.cache.hash_type
    if args.action == "create":
        created = hashcheck.create_hashcheck_file(args.path, not args.no_hash, hash_type)
        if created is None:
            return 1
        print(created)
        return 0

    sidecar = args.hashcheck or hashcheck.hashcheck_path_for(args.path)
    recheck_days = args.recheck_days
    if recheck_days is None:
        recheck_days = settings.cache.recheck_interval_days
    validation = hashcheck.validate_file_vs_hashcheck(
        args.path,
        sidecar,
        hash_type=hash_type,
        recheck_interval_days=recheck_days,
        check_date=not args.ignore_date,
        compute_hash=not args.no_hash,
    )
    if not validation.valid:
        logger.error("%s", validation.error_message)
        return 1
    print(f"{args.path}: valid")
    return 0


def _run_condense(args: argparse.Namespace, settings: RetrieverSettings) -> int:
    result: Result[condenser.CondenseResult]
    if args.action == "sparse":
        min_ions = args.min_ions
        if min_ions is None:
            min_ions = settings.condenser.minimum_ion_count
        result = condenser.remove_sparse_spectra(args.path, min_ions)
    elif args.action == "tags":
        result = condenser.validate_scan_and_cs_tags(
            args.path, replace_source=args.output is None, output_path=args.output
        )
    else:
        threshold = args.threshold
        if threshold is None:
            threshold = settings.condenser.size_threshold_bytes
        result = condenser.condense_if_oversized(args.path, threshold)

    if result.is_err:
        return 1
    summary = {"status": result.status}
    if result.value is not None:
        summary.update(
            spectra_parsed=result.value.spectra_parsed,
            spectra_removed=result.value.spectra_removed,
            lines_updated=result.value.lines_updated,
            points_removed=result.value.points_removed,
            replaced=result.value.replaced,
        )
    elif result.message:
        summary["reason"] = result.message
    print(json.dumps(summary))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(level=args.log_level, fmt=args.log_format)

    try:
        settings = load_settings(args.settings)
    except RetrievalError as exc:
        logger.error("Invalid settings: %s", exc, extra=exc.as_log_fields())
        return 1

    try:
        if args.command in (COMMAND_FIND, COMMAND_RETRIEVE):
            job_params = MappingJobParams.from_file(args.job_params)
            with LogContext(dataset=job_params.get_param(JOB_PARAM_DATASET_NAME)):
                if args.command == COMMAND_FIND:
                    return _run_find(args, settings, job_params)
                return _run_retrieve(args, settings, job_params)
        if args.command == COMMAND_HASHCHECK:
            return _run_hashcheck(args, settings)
        if args.command == COMMAND_CONDENSE:
            return _run_condense(args, settings)
    except RetrievalError as exc:
        logger.error("%s", exc, extra=exc.as_log_fields())
        return 1
    except OSError as exc:
        logger.error("I/O error: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
