"""
Example usage of egs_dl library

This script demonstrates how to:
1. Parse a downloaded build manifest
2. Build a download plan for some of its files
3. Fetch, verify and assemble the files with ChunkDownloader
"""

import logging
import sys
from pathlib import Path

from egs_dl import ChunkDownloader, EpicAPI, build_plan, parse
from egs_dl.resolver import cdn_bases


def setup_logging():
    """Configure logging for the example."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def main():
    """Main example function."""
    setup_logging()
    logger = logging.getLogger("example")

    if len(sys.argv) < 3:
        logger.error("Usage: python example.py MANIFEST OUTPUT_DIR [CDN_BASE] [PATTERN]")
        return 1

    manifest_path, output_dir = Path(sys.argv[1]), Path(sys.argv[2])
    manifest = parse(manifest_path.read_bytes())
    logger.info(f"Loaded {manifest.app_name} {manifest.build_version}: {len(manifest.files)} files")

    # CDN base: argument, else whatever the manifest recorded
    bases = [sys.argv[3]] if len(sys.argv) > 3 else cdn_bases(manifest)
    if not bases:
        logger.error("No CDN base available")
        return 1

    selector = sys.argv[4] if len(sys.argv) > 4 else None
    plan = build_plan(manifest, selector, bases[0])

    # Pre-allocate output files so writes can land in any order
    for file_plan in plan:
        path = output_dir / file_plan.file.path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.truncate(file_plan.file.size)

    def write_to_disk(write, data):
        with open(output_dir / write.path, "r+b") as f:
            f.seek(write.file_offset)
            f.write(data)

    def show_progress(downloaded, total):
        logger.info(f"Progress: {downloaded:,}/{total:,} bytes")

    downloader = ChunkDownloader(EpicAPI(), max_workers=4)
    downloader.execute(plan, write_to_disk, show_progress)

    logger.info(f"Done: {len(plan.files)} files in {output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
