"""
Download plan executor

Fetches each ChunkFetchTask once, unwraps the .chunk container, decompresses
and verifies the data, then hands every destination write to a sink. Where
the bytes end up (files, memory, another process) is the sink's business.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from egs_dl import constants
from egs_dl.api import EpicAPI
from egs_dl.codec import ChunkFile, decompress
from egs_dl.exceptions import CodecError, DownloadError, IntegrityError
from egs_dl.models import ChunkFetchTask, ChunkWrite, DownloadPlan
from egs_dl.verify import HashVerifier

WriteSink = Callable[[ChunkWrite, bytes], None]


class ChunkDownloader:
    """
    Executes download plans with a thread pool.

    Decompression and hashing run in the worker threads; the sink is always
    called from the thread that called ``execute``.
    """

    def __init__(self, api: EpicAPI, max_workers: int = constants.DEFAULT_WORKERS):
        """
        Initialize the downloader.

        Args:
            api: EpicAPI instance used to fetch chunk bytes
            max_workers: Maximum number of concurrent download threads
        """
        self.api = api
        self.max_workers = max_workers
        self.logger = logging.getLogger("egs_dl.downloader")

    def fetch_task(self, task: ChunkFetchTask) -> bytes:
        """
        Download, decompress and verify one chunk.

        Args:
            task: Task from a DownloadPlan

        Returns:
            Verified uncompressed chunk window

        Raises:
            DownloadError: Transport, codec or integrity failure
        """
        raw = self.api.get_chunk(task.url)
        if len(raw) != task.compressed_size:
            self.logger.debug(f"Chunk {task.guid}: got {len(raw):,} bytes, manifest says {task.compressed_size:,}")

        try:
            if ChunkFile.is_chunk_file(raw):
                container = ChunkFile.from_bytes(raw)
                if container.guid != task.guid:
                    raise DownloadError(f"Chunk {task.guid}: container holds chunk {container.guid}")
                if container.compression is not task.compression:
                    self.logger.debug(f"Chunk {task.guid}: container is {container.compression.value}, "
                                      f"manifest expects {task.compression.value}")
                data = container.decompress(task.uncompressed_size)
            else:
                data = decompress(raw, task.uncompressed_size, task.compression)
            HashVerifier(task.hash_algorithm).verify(data, task.expected_digest, task.guid)
        except (CodecError, IntegrityError) as e:
            self.logger.error(f"Chunk {task.guid} failed verification: {e}")
            raise DownloadError(f"Chunk {task.guid} from {task.url}: {e}") from e

        return data

    def execute(self, plan: DownloadPlan, sink: WriteSink,
                progress_callback: Optional[Callable[[int, int], None]] = None) -> int:
        """
        Run every task of a plan.

        Args:
            plan: Plan from DownloadPlanBuilder
            sink: Called with (write, data) for each destination write
            progress_callback: Optional callback(bytes_downloaded, total_bytes)

        Returns:
            Number of bytes handed to the sink

        Raises:
            DownloadError: If any chunk fails; outstanding tasks are cancelled
        """
        total_bytes = plan.download_size
        downloaded_bytes = 0
        written = 0

        self.logger.info(f"Downloading {len(plan.tasks)} chunks for {len(plan.files)} files")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_task = {
                executor.submit(self.fetch_task, task): task
                for task in plan.tasks
            }

            for future in as_completed(future_to_task):
                task = future_to_task[future]
                try:
                    data = future.result()
                except DownloadError:
                    for pending in future_to_task:
                        pending.cancel()
                    raise

                for write in task.writes:
                    sink(write, data[write.chunk_offset:write.chunk_offset + write.size])
                    written += write.size

                downloaded_bytes += task.compressed_size
                if progress_callback:
                    progress_callback(downloaded_bytes, total_bytes)

                self.logger.debug(f"Completed chunk {task.guid} ({len(task.writes)} writes)")

        self.logger.info(f"Finished plan: {written:,} bytes written")
        return written
