"""Tiered file resolution and retrieval for analysis jobs."""

from retrieval_core.archive import ArchiveClient, DownloadLayout, DownloadQueue, HttpArchiveTransport
from retrieval_core.condenser import (
    condense_if_oversized,
    remove_sparse_spectra,
    validate_scan_and_cs_tags,
)
from retrieval_core.hashcheck import create_hashcheck_file, validate_file_vs_hashcheck
from retrieval_core.resolver import Resolver
from retrieval_core.settings import RetrieverSettings, load_settings
from retrieval_core.tiers import StorageTier, TierParents, build_candidates

__all__ = [
    "ArchiveClient",
    "DownloadLayout",
    "DownloadQueue",
    "HttpArchiveTransport",
    "Resolver",
    "RetrieverSettings",
    "StorageTier",
    "TierParents",
    "build_candidates",
    "condense_if_oversized",
    "create_hashcheck_file",
    "load_settings",
    "remove_sparse_spectra",
    "validate_file_vs_hashcheck",
    "validate_scan_and_cs_tags",
]
