from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone

L = logging.getLogger("snap_runtime.paths")

PLACEHOLDER_OUTPUT_DIR = "path/to/output/folder"
DEFAULT_SUBDIR = "screenshots"


def coerce_utc_datetime(value: datetime | None) -> datetime:
    ref = value or datetime.now(timezone.utc)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=timezone.utc)
    return ref.astimezone(timezone.utc)


def format_snapshot_filename(
    seq: int, ext: str = ".png", ts_utc: datetime | None = None
) -> str:
    ref = coerce_utc_datetime(ts_utc)
    ts = ref.strftime("%Y-%m-%dT%H-%M-%S.%f")[:-3] + "Z"
    if not ext.startswith("."):
        ext = f".{ext}"
    return f"snapshot_{ts}_{int(seq):05d}{ext}"


def choose_output_dir(data_dir: str, save_screenshots: bool, output_dir: str) -> str:
    """Pick the target folder without touching the filesystem."""
    folder = str(output_dir or "").strip()
    if save_screenshots and folder and folder != PLACEHOLDER_OUTPUT_DIR:
        folder = folder.replace("\\", "/")
        if not os.path.isabs(folder):
            folder = os.path.join(data_dir, folder)
        return folder
    return os.path.join(data_dir, DEFAULT_SUBDIR)


def resolve_output_dir(data_dir: str, save_screenshots: bool, output_dir: str) -> str:
    """Return an existing directory for snapshots, falling back to the temp dir."""
    folder = choose_output_dir(data_dir, save_screenshots, output_dir)
    try:
        os.makedirs(folder, exist_ok=True)
    except OSError as e:
        fallback = tempfile.gettempdir()
        L.warning(
            "Cannot create output dir %s (%s); falling back to %s", folder, e, fallback
        )
        return fallback
    return folder


__all__ = [
    "PLACEHOLDER_OUTPUT_DIR",
    "choose_output_dir",
    "coerce_utc_datetime",
    "format_snapshot_filename",
    "resolve_output_dir",
]
