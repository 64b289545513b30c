from __future__ import annotations

from pathlib import Path
import shutil
from typing import Callable, List, Optional, Sequence

from tqdm import tqdm

from GreedyJLF.atlases import AtlasEntry, is_same_image, resolve_atlases
from GreedyJLF.config import FusionConfig
from GreedyJLF.errors import InputError, WorkingDirectoryError
from GreedyJLF.fusion import check_enough_atlases, run_fusion
from GreedyJLF.greedy import DeformedAtlas, register_atlas
from GreedyJLF.image_io import is_readable_image, read_image_header
from GreedyJLF.tools import find_timer, require_tool
from GreedyJLF.workdir import ensure_output_dir, split_output_root, working_directory


class FusionRunner:
    """Register every atlas to the input image with greedy, then fuse the labels."""

    def __init__(self, cfg: FusionConfig) -> None:
        self.cfg = cfg
        self.timer: Optional[List[str]] = None

    def run(self) -> Path:
        self.check_tools()
        self.check_inputs()
        atlases = resolve_atlases(self.cfg.atlas_dir)
        print(f"[greedy-jlf] Found {len(atlases)} atlases in {self.cfg.atlas_dir}")

        output_dir, file_root = split_output_root(self.cfg.output_root)
        ensure_output_dir(output_dir)

        with working_directory(output_dir, file_root, self.cfg.tmp_root) as workdir:
            # Subject image is read by every greedy call, keep a local copy.
            fixed = workdir / f"{file_root}ImageToLabel.nii.gz"
            _copy(self.cfg.input_image, fixed, shutil.copyfile)

            deformed = self.register_atlases(atlases, fixed=fixed, workdir=workdir.path, output_dir=output_dir)
            check_enough_atlases(len(deformed), len(atlases))
            output = run_fusion(self.cfg, fixed, deformed, timer=self.timer)

        print(f"[greedy-jlf] Wrote {output}")
        return output

    def check_tools(self) -> None:
        require_tool(self.cfg.greedy_exe, "registration")
        require_tool(self.cfg.fusion_exe, "label fusion")
        if self.cfg.time_processes:
            self.timer = find_timer()

    def check_inputs(self) -> None:
        cfg = self.cfg
        if not cfg.input_image.is_file():
            raise InputError(f"Cannot find input image {cfg.input_image}")
        if cfg.input_mask is not None and not cfg.input_mask.is_file():
            raise InputError(f"Cannot find mask {cfg.input_mask}")
        if cfg.registration_mask is not None and not cfg.registration_mask.is_file():
            raise InputError(f"Cannot find registration mask {cfg.registration_mask}")
        if cfg.verify_images:
            header = read_image_header(cfg.input_image)
            if header is None:
                raise InputError(f"Cannot read input image {cfg.input_image}")
            if header.dimension != cfg.registration.dimension:
                raise InputError(
                    f"Input image {cfg.input_image} is {header.dimension}D, "
                    f"expected {cfg.registration.dimension}D"
                )

    def register_atlases(
        self,
        atlases: Sequence[AtlasEntry],
        *,
        fixed: Path,
        workdir: Path,
        output_dir: Path,
    ) -> List[DeformedAtlas]:
        """Run the registration chain for each atlas; return the usable deformed atlases in input order."""
        registered: List[DeformedAtlas] = []
        for atlas in tqdm(atlases, desc="atlases"):
            # Leave-one-out: paths must match exactly, relative and absolute forms are not equated.
            if is_same_image(atlas, self.cfg.input_image):
                print(f"[greedy-jlf] Skipping {atlas.name} because it is the same image as the input")
                continue
            print(f"[greedy-jlf] Registering {atlas.name}")
            deformed, _ = register_atlas(atlas, fixed=fixed, workdir=workdir, cfg=self.cfg, timer=self.timer)
            if not self._is_usable(deformed):
                print(f"[greedy-jlf] WARNING: excluding {atlas.name}, deformed image or labels not produced")
                continue
            registered.append(deformed)
            if self.cfg.keep_deformed_atlases:
                _copy(deformed.image, output_dir / deformed.image.name)
                _copy(deformed.labels, output_dir / deformed.labels.name)
        return registered

    def _is_usable(self, deformed: DeformedAtlas) -> bool:
        if not deformed.exists():
            return False
        if self.cfg.verify_images:
            return is_readable_image(deformed.image) and is_readable_image(deformed.labels)
        return True


def _copy(src: Path, dst: Path, copy: Optional[Callable[[Path, Path], object]] = None) -> None:
    try:
        (copy or shutil.copy2)(src, dst)
    except OSError as exc:
        raise WorkingDirectoryError(f"Cannot copy {src} to {dst}: {exc}") from exc
