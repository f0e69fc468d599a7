"""CLI entry point."""

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import List, Optional

from common.logging_config import setup_logging
from cli.config import Config
from cli.scheduler import UploadMode, UploadScheduler, UploadState
from cli.upload_client import UploadClient
from cli.utils import ProgressPrinter

DEFAULT_CONFIG_PATH = Path.home() / '.chunkup' / 'config.json'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='chunkup',
        description='Upload a file to the chunked upload coordinator.',
    )
    parser.add_argument('path', type=Path, help='File to upload')
    parser.add_argument('--name', help='Name to store the file under (defaults to the base name)')
    parser.add_argument(
        '--mode',
        choices=[mode.value for mode in UploadMode],
        default=UploadMode.PARALLEL.value,
        help='Upload strategy (default: parallel)',
    )
    parser.add_argument('--workers', type=int, help='Concurrent chunk uploads in parallel mode')
    parser.add_argument('--chunk-size', type=int, help='Chunk size in bytes')
    parser.add_argument('--config', type=Path, default=DEFAULT_CONFIG_PATH, help='Path to config file')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    return parser


async def run_upload(args: argparse.Namespace, config: Config) -> UploadState:
    """
    Upload one file and return the terminal state.
    """
    file_size = args.path.stat().st_size
    progress = ProgressPrinter(args.name or args.path.name, file_size)

    async with UploadClient(config) as client:
        scheduler = UploadScheduler(
            client,
            args.path,
            file_name=args.name,
            mode=UploadMode(args.mode),
            chunk_size=args.chunk_size or config.get_chunk_size(),
            max_workers=args.workers or config.get_max_workers(),
            progress_callback=progress,
        )
        try:
            result = await scheduler.run()
        except asyncio.CancelledError:
            scheduler.cancel()
            raise

    if result.state is UploadState.COMPLETED:
        print(f"Uploaded {result.file_name} ({result.total_chunks} chunks)")
    else:
        print(f"Upload {result.state.value}: {result.error or 'stopped before completion'}", file=sys.stderr)
    return result.state


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for CLI."""
    args = build_parser().parse_args(argv)

    log_level = 'DEBUG' if args.debug else os.getenv('LOG_LEVEL', 'INFO')
    logger = setup_logging('cli', log_level=log_level)

    if not args.path.is_file():
        print(f"File not found: {args.path}", file=sys.stderr)
        return 2

    config = Config(args.config)

    logger.info("CLI starting...")
    try:
        state = asyncio.run(run_upload(args, config))
    except KeyboardInterrupt:
        print("\nUpload interrupted; run the same command again to resume.", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error(f"CLI error: {e}", exc_info=True)
        raise
    finally:
        logger.info("CLI exiting")

    return 0 if state is UploadState.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
