from __future__ import annotations

from contextlib import contextmanager
import os
from pathlib import Path
import shutil
from typing import Iterator, Optional, Tuple

from GreedyJLF.errors import WorkingDirectoryError


WORKDIR_SUFFIX = "greedyJLF"


def split_output_root(output_root: str) -> Tuple[Path, str]:
    """Split an output prefix into (directory, file prefix).

    `/out/subj_` -> (`/out`, `subj_`), `/out/` -> (`/out`, ``), `subj_` -> (`.`, `subj_`).
    """
    head, tail = os.path.split(output_root)
    return Path(head or "."), tail


def ensure_output_dir(output_dir: Path) -> Path:
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WorkingDirectoryError(f"Cannot create output directory {output_dir}: {exc}") from exc
    return output_dir


class WorkingDirectory:
    """Scratch directory owned by a single run.

    The name is deterministic (`<prefix>greedyJLF`) so a leftover from a failed run
    is detected when `create()` refuses an existing directory.
    """

    def __init__(self, output_dir: Path, file_root: str, tmp_root: Optional[Path] = None) -> None:
        base = tmp_root if tmp_root is not None and tmp_root.is_dir() else output_dir
        self.path = base / f"{file_root}{WORKDIR_SUFFIX}"

    def create(self) -> Path:
        try:
            self.path.mkdir(mode=0o755, parents=True, exist_ok=False)
        except FileExistsError as exc:
            raise WorkingDirectoryError(
                f"Cannot create working directory {self.path} (maybe it exists from a previous failed run)"
            ) from exc
        except OSError as exc:
            raise WorkingDirectoryError(f"Cannot create working directory {self.path}: {exc}") from exc
        return self.path

    def cleanup(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        if self.path.exists():
            print(f"[greedy-jlf] WARNING: could not fully remove working directory {self.path}")

    def __truediv__(self, name: str) -> Path:
        return self.path / name


@contextmanager
def working_directory(output_dir: Path, file_root: str, tmp_root: Optional[Path] = None) -> Iterator[WorkingDirectory]:
    """Create the working directory and remove it after the body completes.

    On an exception the directory is kept for postmortem inspection.
    """
    workdir = WorkingDirectory(output_dir, file_root, tmp_root)
    workdir.create()
    try:
        yield workdir
    except BaseException:
        print(f"[greedy-jlf] Run failed; leaving working directory {workdir.path} for inspection")
        raise
    workdir.cleanup()
