"""
Download plan construction

Turns a validated BuildManifest and a file selection into an ordered list
of chunk fetch tasks. Chunks shared by several files (or used several times
by one file) are fetched once and carry one write instruction per use.
"""

import fnmatch
import logging
from typing import Callable, Dict, Iterable, List, Optional, Union

from egs_dl import utils
from egs_dl.exceptions import FileNotFound
from egs_dl.manifest import validate
from egs_dl.models import (
    BuildManifest, ChunkFetchTask, ChunkGuid, ChunkWrite, DownloadPlan, FileEntry, FilePlan
)
from egs_dl.resolver import ChunkAddressResolver, validate_cdn_base

FileSelector = Union[None, str, Iterable[str], Callable[[FileEntry], bool]]


def select_files(manifest: BuildManifest, file_selector: FileSelector) -> List[FileEntry]:
    """
    Resolve a selector against the manifest's files.

    Args:
        manifest: Manifest to select from
        file_selector: None (all files), a path, a glob pattern, an iterable
            of paths/patterns, or a predicate taking a FileEntry

    Returns:
        Selected files in manifest order

    Raises:
        FileNotFound: If nothing matches, an explicit path is missing or a
            pattern matches no file
    """
    files = list(manifest.files)
    if file_selector is None:
        selected = files
    elif callable(file_selector):
        selected = [entry for entry in files if file_selector(entry)]
    else:
        if isinstance(file_selector, str):
            selectors = [file_selector]
        else:
            selectors = list(file_selector)

        paths = {utils.normalize_path(entry.path): entry for entry in files}
        wanted = set()
        missing = []
        for selector in selectors:
            key = utils.normalize_path(selector)
            if utils.is_glob_pattern(key):
                matches = [path for path in paths if fnmatch.fnmatchcase(path, key)]
                if not matches:
                    missing.append(selector)
                wanted.update(matches)
            elif key in paths:
                wanted.add(key)
            else:
                missing.append(selector)
        if missing:
            raise FileNotFound(file_selector, missing)
        selected = [entry for entry in files if utils.normalize_path(entry.path) in wanted]

    if not selected:
        raise FileNotFound(file_selector)
    return selected


class DownloadPlanBuilder:
    """
    Builds download plans for one manifest.

    Each ``build_plan`` call keeps its own GUID -> task mapping, so plans can
    be built concurrently from the same builder.
    """

    def __init__(self, manifest: BuildManifest, resolver: Optional[ChunkAddressResolver] = None):
        self.manifest = manifest
        self.resolver = resolver or ChunkAddressResolver(manifest)
        self.logger = logging.getLogger("egs_dl.planner")

    def build_plan(self, file_selector: FileSelector, cdn_base: str) -> DownloadPlan:
        """
        Build a plan for the selected files.

        Args:
            file_selector: Which files to include (see select_files)
            cdn_base: CDN base URL for chunk URLs

        Returns:
            DownloadPlan with tasks ordered by first use

        Raises:
            PlanError: FileNotFound or InvalidCdnBase
            ManifestError: If the manifest breaks its invariants
        """
        base = validate_cdn_base(cdn_base)
        validate(self.manifest)
        selected = select_files(self.manifest, file_selector)

        order: List[ChunkGuid] = []
        urls: Dict[ChunkGuid, str] = {}
        writes: Dict[ChunkGuid, List[ChunkWrite]] = {}
        file_guids: List[List[ChunkGuid]] = []

        for entry in selected:
            guids: List[ChunkGuid] = []
            for part in sorted(entry.parts, key=lambda p: p.file_offset):
                if part.guid not in urls:
                    urls[part.guid] = self.resolver.resolve(part.guid, base)
                    writes[part.guid] = []
                    order.append(part.guid)
                writes[part.guid].append(ChunkWrite(
                    path=entry.path,
                    file_offset=part.file_offset,
                    chunk_offset=part.offset,
                    size=part.size,
                ))
                if part.guid not in guids:
                    guids.append(part.guid)
            file_guids.append(guids)

        tasks: Dict[ChunkGuid, ChunkFetchTask] = {}
        for guid in order:
            chunk = self.manifest.chunk(guid)
            tasks[guid] = ChunkFetchTask(
                guid=guid,
                url=urls[guid],
                compressed_size=chunk.file_size,
                uncompressed_size=chunk.window_size,
                expected_digest=chunk.digest,
                hash_algorithm=chunk.hash_algorithm,
                compression=chunk.compression,
                writes=tuple(writes[guid]),
            )

        plan = DownloadPlan(
            files=tuple(
                FilePlan(file=entry, tasks=tuple(tasks[guid] for guid in guids))
                for entry, guids in zip(selected, file_guids)
            ),
            tasks=tuple(tasks[guid] for guid in order),
            cdn_base=base,
        )
        self.logger.info(
            f"Planned {len(plan.files)} files, {len(plan.tasks)} chunks "
            f"({utils.format_size(plan.download_size)} download, {utils.format_size(plan.total_size)} installed)"
        )
        return plan


def build_plan(manifest: BuildManifest, file_selector: FileSelector, cdn_base: str) -> DownloadPlan:
    """Build a download plan (see DownloadPlanBuilder.build_plan)."""
    return DownloadPlanBuilder(manifest).build_plan(file_selector, cdn_base)
