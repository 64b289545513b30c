from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import shlex
import shutil
import subprocess
from typing import List, Optional, Sequence, Tuple

from GreedyJLF.errors import ToolNotFoundError


def require_tool(name: str, purpose: str = "") -> str:
    exe = shutil.which(name)
    if not exe:
        detail = f" ({purpose})" if purpose else ""
        raise ToolNotFoundError(f"Cannot run without {name}{detail} on the PATH")
    return exe


def find_timer() -> Optional[List[str]]:
    """Return a `time -v` prefix if GNU time is available, else None."""
    exe = shutil.which("time")
    if not exe:
        print("[greedy-jlf] WARNING: Cannot time commands as requested, could not find time program")
        return None
    return [exe, "-v"]


@dataclass
class ToolCommand:
    """An external command as ordered argument groups.

    Each group is either a flag followed by its values (`("-dof", "6")`) or a run of
    positional arguments. Order is preserved because greedy's reslice options are
    order-sensitive (`-ri` applies to the following `-rm`).
    """

    program: str
    groups: List[Tuple[str, ...]] = field(default_factory=list)

    def flag(self, name: str, *values: object) -> "ToolCommand":
        self.groups.append((name, *(str(v) for v in values)))
        return self

    def positional(self, *values: object) -> "ToolCommand":
        self.groups.append(tuple(str(v) for v in values))
        return self

    def argv(self, prefix: Optional[Sequence[str]] = None) -> List[str]:
        out = list(prefix or [])
        out.append(self.program)
        for group in self.groups:
            out.extend(group)
        return out

    def values_of(self, name: str) -> List[Tuple[str, ...]]:
        """Values of every occurrence of flag `name`."""
        return [group[1:] for group in self.groups if group and group[0] == name]

    def __str__(self) -> str:
        return shlex.join(self.argv())


@dataclass(frozen=True)
class InvocationResult:
    command: ToolCommand
    returncode: int
    expected_outputs: Tuple[Path, ...] = ()

    @property
    def outputs_exist(self) -> bool:
        return all(p.exists() for p in self.expected_outputs)

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.outputs_exist

    def missing_outputs(self) -> List[Path]:
        return [p for p in self.expected_outputs if not p.exists()]


def run_command(
    command: ToolCommand,
    *,
    label: str,
    expected_outputs: Sequence[Path] = (),
    timer: Optional[Sequence[str]] = None,
) -> InvocationResult:
    """Echo and run `command`, blocking until it exits. Output streams to the console."""
    argv = command.argv(timer)
    print(f"\n--- {label} Call ---\n{shlex.join(argv)}\n---")
    try:
        proc = subprocess.run(argv, check=False)
        returncode = proc.returncode
    except OSError as exc:
        print(f"[greedy-jlf] WARNING: could not start {command.program}: {exc}")
        returncode = 127
    return InvocationResult(command=command, returncode=returncode, expected_outputs=tuple(expected_outputs))
