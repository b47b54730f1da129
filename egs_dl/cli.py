#!/usr/bin/env python3
"""
Command-line interface for egs_dl

Inspects manifest files and prints download plans. Fetching is left to the
library (see example.py).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from egs_dl import utils
from egs_dl.codec import ChunkFile, decompress
from egs_dl.exceptions import EgsError
from egs_dl.manifest import parse
from egs_dl.models import ChunkGuid
from egs_dl.planner import build_plan
from egs_dl.resolver import cdn_bases
from egs_dl.verify import verify_chunk


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def load_manifest(path: str):
    """Read and parse a manifest file."""
    return parse(Path(path).read_bytes())


def cmd_info(args):
    """Handle info command to show manifest metadata."""
    manifest = load_manifest(args.manifest)

    print(f"{utils.SYMBOL_CHECK} {manifest.app_name} {manifest.build_version}")
    print(f"  Feature level:  {manifest.version}")
    if manifest.build_id:
        print(f"  Build ID:       {manifest.build_id}")
    print(f"  Launch:         {manifest.launch_exe} {manifest.launch_command}".rstrip())
    print(f"  Files:          {len(manifest.files)} ({utils.format_size(manifest.total_size)})")
    print(f"  Chunks:         {len(manifest.chunks)} ({utils.format_size(manifest.total_download_size)})")
    if manifest.prereq_ids:
        print(f"  Prerequisites:  {manifest.prereq_name} ({', '.join(manifest.prereq_ids)})")
    for key, value in manifest.custom_fields:
        print(f"  {key}: {value}")
    return 0


def cmd_files(args):
    """Handle files command to list manifest files."""
    manifest = load_manifest(args.manifest)

    for entry in manifest.files[:args.limit]:
        print(f"{entry.size:>14,}  {len(entry.parts):>5} parts  {entry.path}")

    if len(manifest.files) > args.limit:
        print(f"\n... and {len(manifest.files) - args.limit} more")
    return 0


def cmd_plan(args):
    """Handle plan command to print a download plan."""
    manifest = load_manifest(args.manifest)

    cdn_base = args.cdn_base
    if not cdn_base:
        bases = cdn_bases(manifest)
        if not bases:
            print(f"{utils.SYMBOL_ERROR} No CDN base given and none recorded in the manifest")
            return 1
        cdn_base = bases[0]

    plan = build_plan(manifest, args.select or None, cdn_base)

    if args.json:
        print(json.dumps({
            "cdn_base": plan.cdn_base,
            "tasks": [
                {
                    "guid": task.guid.hex,
                    "url": task.url,
                    "compressed_size": task.compressed_size,
                    "uncompressed_size": task.uncompressed_size,
                    "digest": task.expected_digest.hex(),
                    "hash_algorithm": task.hash_algorithm.value,
                    "compression": task.compression.value,
                    "writes": [
                        {
                            "path": write.path,
                            "file_offset": write.file_offset,
                            "chunk_offset": write.chunk_offset,
                            "size": write.size,
                        }
                        for write in task.writes
                    ],
                }
                for task in plan.tasks
            ],
        }, indent=2))
        return 0

    print(f"{utils.SYMBOL_CHECK} {len(plan.files)} files, {len(plan.tasks)} chunks, "
          f"{utils.format_size(plan.download_size)} to download")
    for task in plan.tasks:
        print(task.url)
        for write in task.writes:
            start, end = write.file_range
            print(f"    {write.path} [{start}, {end})")
    return 0


def cmd_verify_chunk(args):
    """Handle verify-chunk command to check a downloaded .chunk file."""
    manifest = load_manifest(args.manifest)
    data = Path(args.chunk).read_bytes()

    if ChunkFile.is_chunk_file(data):
        container = ChunkFile.from_bytes(data)
        guid = container.guid
    elif args.guid:
        container = None
        guid = ChunkGuid.from_hex(args.guid)
    else:
        print(f"{utils.SYMBOL_ERROR} Not a chunk container; pass --guid for raw payloads")
        return 1

    chunk = manifest.chunk(guid)
    if chunk is None:
        print(f"{utils.SYMBOL_ERROR} Chunk {guid} is not in the manifest")
        return 1

    if container is not None:
        uncompressed = container.decompress(chunk.window_size)
    else:
        uncompressed = decompress(data, chunk.window_size, chunk.compression)
    verify_chunk(uncompressed, chunk)

    print(f"{utils.SYMBOL_CHECK} Chunk {guid} OK ({chunk.hash_algorithm.value}, "
          f"{utils.format_size(len(uncompressed))})")
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="EGS DL - Epic Games Store manifest tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  egs-dl info game.manifest\n"
               "  egs-dl files game.manifest --limit 20\n"
               "  egs-dl plan game.manifest --cdn-base https://cdn.example.com/Builds/x/y/default\n"
               "  egs-dl plan game.manifest --select 'Engine/*.pak' --json\n"
               "  egs-dl verify-chunk game.manifest 0123_ABCD.chunk"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--ascii",
        action="store_true",
        help="Use ASCII status symbols (also via FORCE_ASCII=1)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    info_parser = subparsers.add_parser("info", help="Show manifest metadata")
    info_parser.add_argument("manifest", help="Path to a manifest file")
    info_parser.set_defaults(func=cmd_info)

    files_parser = subparsers.add_parser("files", help="List files in a manifest")
    files_parser.add_argument("manifest", help="Path to a manifest file")
    files_parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum files to show (default: 50)"
    )
    files_parser.set_defaults(func=cmd_files)

    plan_parser = subparsers.add_parser("plan", help="Print the download plan for files")
    plan_parser.add_argument("manifest", help="Path to a manifest file")
    plan_parser.add_argument(
        "--cdn-base",
        default=None,
        help="CDN base URL (default: SourceURL/BaseUrl recorded in the manifest)"
    )
    plan_parser.add_argument(
        "--select",
        action="append",
        default=[],
        help="File path or glob pattern (repeatable; default: all files)"
    )
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the plan as JSON"
    )
    plan_parser.set_defaults(func=cmd_plan)

    verify_parser = subparsers.add_parser("verify-chunk", help="Verify a downloaded chunk against a manifest")
    verify_parser.add_argument("manifest", help="Path to a manifest file")
    verify_parser.add_argument("chunk", help="Path to a .chunk file or raw payload")
    verify_parser.add_argument("--guid", default=None, help="Chunk GUID for raw payloads")
    verify_parser.set_defaults(func=cmd_verify_chunk)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)
    utils.setup_symbols(args.ascii)

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 130
    except EgsError as e:
        print(f"{utils.SYMBOL_ERROR} {e}")
        return 1
    except (OSError, ValueError) as e:
        print(f"{utils.SYMBOL_ERROR} {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
