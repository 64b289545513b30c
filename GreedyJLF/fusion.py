from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence

from GreedyJLF.config import FusionConfig
from GreedyJLF.errors import FusionError, InsufficientAtlasesError
from GreedyJLF.greedy import DeformedAtlas
from GreedyJLF.tools import InvocationResult, ToolCommand, run_command


def check_enough_atlases(registered: int, total: int) -> None:
    """Refuse to fuse when no atlas, or fewer than half of `total`, registered."""
    if registered == 0 or registered < total / 2:
        raise InsufficientAtlasesError(
            f"Fewer than half of the atlases registered successfully ({registered} of {total}), will not run JLF"
        )


def build_fusion_command(
    cfg: FusionConfig,
    fixed: Path,
    deformed: Sequence[DeformedAtlas],
    output: Path,
) -> ToolCommand:
    cmd = ToolCommand(cfg.fusion_exe).positional(cfg.registration.dimension)
    if cfg.input_mask is not None:
        cmd.flag("-M", cfg.input_mask)
    cmd.flag("-m", cfg.voting_method)
    cmd.flag("-g", *(d.image for d in deformed))
    cmd.flag("-l", *(d.labels for d in deformed))
    cmd.positional(fixed, output)
    return cmd


def run_fusion(
    cfg: FusionConfig,
    fixed: Path,
    deformed: Sequence[DeformedAtlas],
    timer: Optional[Sequence[str]] = None,
) -> Path:
    output = cfg.output_labels
    print(f"\n[fusion] Labeling with {len(deformed)} atlases")
    cmd = build_fusion_command(cfg, fixed, deformed, output)
    result: InvocationResult = run_command(cmd, label="JLF", expected_outputs=(output,), timer=timer)
    if result.returncode != 0:
        print(f"[fusion] WARNING: {cfg.fusion_exe} exited with status {result.returncode}")
    if not result.outputs_exist:
        raise FusionError(f"{cfg.fusion_exe} did not write {output}")
    return output
