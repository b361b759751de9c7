from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

SUMMARY_FILENAME = "summary.json"


@dataclass(frozen=True)
class OutputPaths:
    root: Path
    tables: Path
    summary: Path

    @property
    def summary_file(self) -> Path:
        return self.summary / SUMMARY_FILENAME

    def table_path(self, name: str, fmt: str) -> Path:
        return self.tables / f"{name}.{fmt}"


def build_output_paths(out_dir: Path) -> OutputPaths:
    """Create ``tables/`` and ``summary/`` under ``out_dir``."""
    out_dir = Path(out_dir)
    paths = OutputPaths(root=out_dir, tables=out_dir / "tables", summary=out_dir / "summary")
    for directory in (paths.tables, paths.summary):
        directory.mkdir(parents=True, exist_ok=True)
    return paths
