"""RGBA PNG encode/decode for snapshots (Pillow-based)."""

from __future__ import annotations

import os

from PIL import Image

from emutest.lib.snapshot import Snapshot


def save_png(snapshot: Snapshot, filename: str | os.PathLike[str]) -> str:
    """Write the snapshot as an RGBA PNG. Returns the path written."""
    path = os.fspath(filename)
    snapshot.to_image().save(path, format="PNG")
    return path


def load_png(filename: str | os.PathLike[str]) -> Snapshot:
    """Read a PNG into an RGBA snapshot (other modes are converted)."""
    path = os.fspath(filename)
    with Image.open(path) as img:
        return Snapshot.from_image(img, path=path)
