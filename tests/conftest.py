from __future__ import annotations

from pathlib import Path
import subprocess
from typing import Callable, List

import pytest

from GreedyJLF.config import FusionConfig


class FakeTools:
    """Stands in for greedy and label_fusion: records argv and writes the outputs they would."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.failures: List[Callable[[List[str]], bool]] = []

    def fail_when(self, predicate: Callable[[List[str]], bool]) -> None:
        self.failures.append(predicate)

    def calls_to(self, program: str) -> List[List[str]]:
        return [c for c in self.calls if Path(_strip_timer(c)[0]).name == program]

    def __call__(self, argv, check=False, **kwargs):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        cmd = _strip_timer(argv)
        if any(pred(cmd) for pred in self.failures):
            return subprocess.CompletedProcess(argv, 1)
        program = Path(cmd[0]).name
        if program == "greedy":
            for out in _greedy_outputs(cmd):
                Path(out).write_text("fake", encoding="utf-8")
        elif program == "label_fusion":
            Path(cmd[-1]).write_text("labels", encoding="utf-8")
        return subprocess.CompletedProcess(argv, 0)


def _strip_timer(argv: List[str]) -> List[str]:
    if len(argv) > 2 and Path(argv[0]).name == "time" and argv[1] == "-v":
        return argv[2:]
    return argv


def _greedy_outputs(cmd: List[str]) -> List[str]:
    outs = []
    for i, tok in enumerate(cmd):
        if tok == "-o":
            outs.append(cmd[i + 1])
        elif tok == "-rm":
            outs.append(cmd[i + 2])
    return outs


@pytest.fixture
def fake_tools(monkeypatch) -> FakeTools:
    tools = FakeTools()
    monkeypatch.setattr("GreedyJLF.tools.shutil.which", lambda name: f"/opt/bin/{name}")
    monkeypatch.setattr("GreedyJLF.tools.subprocess.run", tools)
    return tools


def make_atlas_dir(root: Path, names: List[str]) -> Path:
    atlas_dir = root / "atlases"
    atlas_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        (atlas_dir / f"{name}.nii.gz").write_text(name, encoding="utf-8")
        (atlas_dir / f"{name}_Seg.nii.gz").write_text(f"{name} seg", encoding="utf-8")
    return atlas_dir


def make_config(tmp_path: Path, atlas_names: List[str], **kwargs) -> FusionConfig:
    subject = tmp_path / "subject.nii.gz"
    subject.write_text("subject", encoding="utf-8")
    scratch = tmp_path / "scratch"
    scratch.mkdir(exist_ok=True)
    defaults = dict(
        input_image=subject,
        atlas_dir=make_atlas_dir(tmp_path, atlas_names),
        output_root=str(tmp_path / "out" / "subj_"),
        threads=2,
        tmp_root=scratch,
    )
    defaults.update(kwargs)
    return FusionConfig(**defaults)
