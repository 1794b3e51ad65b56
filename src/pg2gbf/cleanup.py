"""Interruption handling and intermediate file cleanup."""

from __future__ import annotations

import logging
import signal
import sys
from collections.abc import Iterable
from pathlib import Path

from .utils import remove_file


def remove_chunk_files(paths: Iterable[Path]) -> list[Path]:
    """
    Delete chunk files after a successful merge.

    A file that cannot be deleted is logged and reported back; it does not
    fail the run.

    Args:
        paths: Chunk files to remove

    Returns:
        Paths that could not be removed
    """
    undeleted = []
    removed = 0
    for path in paths:
        if remove_file(path):
            removed += 1
            logging.debug(f"Removed chunk file: {path}")
        else:
            undeleted.append(path)

    logging.info(f"Removed {removed} chunk file(s)")
    if undeleted:
        logging.warning(f"{len(undeleted)} chunk file(s) could not be removed: {', '.join(map(str, undeleted))}")
    return undeleted


def remove_merged_file(path: Path) -> None:
    """Delete the intermediate merged GeoJSON once the Geobuf output exists."""
    if remove_file(path):
        logging.info(f"Removed merged dataset: {path}")


def register_cleanup_handlers() -> None:
    """
    Register signal handlers so an interrupted run exits with status 1.

    Chunk files are left on disk; a restarted run recreates them from offset 0.
    """
    def signal_handler(signum: int, frame) -> None:
        logging.error(f"Received signal {signum}, aborting run (chunk files left on disk)")
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
