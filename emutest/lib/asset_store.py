"""Golden and candidate snapshot layout on disk.

    <base>/snapshots/<case>/00000.png       golden (read-only reference)
    <base>/snapshots-tmp/<case>/00000.png   candidate from the latest run
"""

from __future__ import annotations

import shutil
from pathlib import Path

GOLDEN_DIR = "snapshots"
TMP_DIR = "snapshots-tmp"
INDEX_WIDTH = 5
EXTENSION = "png"


def index_name(index: int) -> str:
    """Zero-padded file name for a snapshot ordinal."""
    if index < 0:
        msg = f"Snapshot index must be >= 0, got {index}"
        raise ValueError(msg)
    return f"{index:0{INDEX_WIDTH}d}.{EXTENSION}"


class AssetStore:
    """Paths for one test case's golden and tmp sequences."""

    def __init__(self, base_path: str | Path, test_case_name: str) -> None:
        self.base_path = Path(base_path)
        self.test_case_name = test_case_name

    @property
    def golden_dir(self) -> Path:
        return self.base_path / GOLDEN_DIR / self.test_case_name

    @property
    def tmp_dir(self) -> Path:
        return self.base_path / TMP_DIR / self.test_case_name

    def ensure_dirs(self) -> None:
        self.golden_dir.mkdir(parents=True, exist_ok=True)
        self.tmp_dir.mkdir(parents=True, exist_ok=True)

    def golden_path(self, index: int) -> Path:
        return self.golden_dir / index_name(index)

    def tmp_path(self, index: int) -> Path:
        return self.tmp_dir / index_name(index)

    def pairs(self, count: int) -> list[tuple[int, Path, Path]]:
        """(index, tmp, golden) for ordinals 0..count-1."""
        return [(i, self.tmp_path(i), self.golden_path(i)) for i in range(count)]

    def clear_tmp(self) -> None:
        """Remove stale candidates so a run never mixes sequences."""
        if self.tmp_dir.is_dir():
            for path in self.tmp_dir.glob(f"*.{EXTENSION}"):
                path.unlink()

    def accept(self) -> list[Path]:
        """Promote the tmp sequence to golden, replacing the old golden set."""
        candidates = sorted(self.tmp_dir.glob(f"*.{EXTENSION}"))
        if not candidates:
            msg = f"No candidate snapshots in {self.tmp_dir}"
            raise FileNotFoundError(msg)
        if self.golden_dir.is_dir():
            shutil.rmtree(self.golden_dir)
        self.golden_dir.mkdir(parents=True)
        accepted = []
        for src in candidates:
            dst = self.golden_dir / src.name
            shutil.copy2(src, dst)
            accepted.append(dst)
        return accepted
