from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from GreedyJLF.atlases import AtlasEntry
from GreedyJLF.config import FusionConfig
from GreedyJLF.tools import InvocationResult, ToolCommand, run_command


@dataclass(frozen=True)
class TransformChain:
    com: Path
    rigid: Path
    affine: Path
    warp: Path

    @classmethod
    def in_dir(cls, workdir: Path, name: str) -> "TransformChain":
        return cls(
            com=workdir / f"{name}ToInputCOM.mat",
            rigid=workdir / f"{name}ToInputRigid.mat",
            affine=workdir / f"{name}ToInputAffine.mat",
            warp=workdir / f"{name}ToInputWarp.nii.gz",
        )


@dataclass(frozen=True)
class DeformedAtlas:
    atlas: AtlasEntry
    image: Path
    labels: Path

    @classmethod
    def in_dir(cls, workdir: Path, atlas: AtlasEntry) -> "DeformedAtlas":
        return cls(
            atlas=atlas,
            image=workdir / f"{atlas.name}_Deformed.nii.gz",
            labels=workdir / f"{atlas.name}_SegDeformed.nii.gz",
        )

    def exists(self) -> bool:
        return self.image.exists() and self.labels.exists()


def greedy_base(cfg: FusionConfig) -> ToolCommand:
    return ToolCommand(cfg.greedy_exe).flag("-d", cfg.registration.dimension).flag("-threads", cfg.threads)


def _with_reg_mask(cmd: ToolCommand, cfg: FusionConfig) -> ToolCommand:
    if cfg.registration_mask is not None:
        cmd.flag("-gm", cfg.registration_mask)
    return cmd


def build_com_command(cfg: FusionConfig, fixed: Path, moving: Path, out: Path) -> ToolCommand:
    return greedy_base(cfg).flag("-moments", 1).flag("-o", out).flag("-i", fixed, moving)


def build_rigid_command(cfg: FusionConfig, fixed: Path, moving: Path, init: Path, out: Path) -> ToolCommand:
    reg = cfg.registration
    cmd = (
        greedy_base(cfg)
        .flag("-a")
        .flag("-dof", 6)
        .flag("-ia", init)
        .flag("-o", out)
        .flag("-search", *cfg.rigid_search_params)
        .flag("-i", fixed, moving)
        .flag("-m", reg.metric, reg.metric_radius)
        .flag("-n", reg.affine_iterations)
    )
    return _with_reg_mask(cmd, cfg)


def build_affine_command(cfg: FusionConfig, fixed: Path, moving: Path, init: Path, out: Path) -> ToolCommand:
    reg = cfg.registration
    cmd = (
        greedy_base(cfg)
        .flag("-a")
        .flag("-dof", 12)
        .flag("-ia", init)
        .flag("-o", out)
        .flag("-i", fixed, moving)
        .flag("-m", reg.metric, reg.metric_radius)
        .flag("-n", reg.affine_iterations)
    )
    return _with_reg_mask(cmd, cfg)


def build_deformable_command(cfg: FusionConfig, fixed: Path, moving: Path, affine: Path, out: Path) -> ToolCommand:
    reg = cfg.registration
    # -sv or -svlb would regularize more
    cmd = (
        greedy_base(cfg)
        .flag("-it", affine)
        .flag("-o", out)
        .flag("-i", fixed, moving)
        .flag("-m", reg.metric, reg.metric_radius)
        .flag("-n", reg.deformable_iterations)
        .flag("-e", reg.deformable_step)
        .flag("-wp", _fmt_number(reg.warp_precision))
    )
    return _with_reg_mask(cmd, cfg)


def build_reslice_command(
    cfg: FusionConfig,
    fixed: Path,
    atlas: AtlasEntry,
    chain: TransformChain,
    deformed: DeformedAtlas,
) -> ToolCommand:
    return (
        greedy_base(cfg)
        .flag("-float")
        .flag("-rf", fixed)
        .flag("-ri", "LINEAR")
        .flag("-rm", atlas.image, deformed.image)
        .flag("-ri", "LABEL", cfg.label_interpolation_sigma)
        .flag("-rm", atlas.labels, deformed.labels)
        .flag("-r", chain.warp, chain.affine)
    )


def register_atlas(
    atlas: AtlasEntry,
    *,
    fixed: Path,
    workdir: Path,
    cfg: FusionConfig,
    timer: Optional[Sequence[str]] = None,
) -> Tuple[DeformedAtlas, List[InvocationResult]]:
    """Register `atlas` to `fixed` and resample its image and labels into subject space.

    Stages run in order COM, rigid, affine, deformable, reslice. With
    `registration.stop_on_stage_failure` the chain stops at the first stage whose
    exit code is non-zero or whose output is missing. The caller decides inclusion
    from `DeformedAtlas.exists()`.
    """
    chain = TransformChain.in_dir(workdir, atlas.name)
    deformed = DeformedAtlas.in_dir(workdir, atlas)
    moving = atlas.image

    stages: List[Tuple[str, Callable[[], ToolCommand], Tuple[Path, ...]]] = [
        ("Reg COM", lambda: build_com_command(cfg, fixed, moving, chain.com), (chain.com,)),
        ("Reg Rigid", lambda: build_rigid_command(cfg, fixed, moving, chain.com, chain.rigid), (chain.rigid,)),
        ("Reg Affine", lambda: build_affine_command(cfg, fixed, moving, chain.rigid, chain.affine), (chain.affine,)),
        (
            "Reg Deformable",
            lambda: build_deformable_command(cfg, fixed, moving, chain.affine, chain.warp),
            (chain.warp,),
        ),
        (
            "Apply transforms",
            lambda: build_reslice_command(cfg, fixed, atlas, chain, deformed),
            (deformed.image, deformed.labels),
        ),
    ]

    results: List[InvocationResult] = []
    for label, build, outputs in stages:
        result = run_command(build(), label=label, expected_outputs=outputs, timer=timer)
        results.append(result)
        if result.ok:
            continue
        missing = ", ".join(p.name for p in result.missing_outputs()) or "none"
        print(
            f"[registration] WARNING: {label} failed for {atlas.name} "
            f"(exit {result.returncode}, missing outputs: {missing})"
        )
        if cfg.registration.stop_on_stage_failure:
            break
    return deformed, results


def _fmt_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
