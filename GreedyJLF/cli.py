from __future__ import annotations

import argparse
from pathlib import Path
import sys
from typing import Dict, Optional, Sequence

from GreedyJLF.config import (
    DEFAULT_LABEL_INTERPOLATION_SIGMA,
    DEFAULT_RIGID_SEARCH_PARAMS,
    DEFAULT_VOTING_METHOD,
    load_config,
)
from GreedyJLF.errors import FusionError
from GreedyJLF.pipeline import FusionRunner


DESCRIPTION = """\
Joint label fusion with greedy.

The atlases should be organized in a single directory containing for each atlas
<id>.nii.gz and <id>_Seg.nii.gz, or an atlases.csv listing '<image>,<labels>' per line.

Output is the consensus segmentation <output-root>Labels.nii.gz.
Requires greedy and label_fusion on the PATH.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="greedy-jlf",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    req = parser.add_argument_group("required (here or in --config)")
    req.add_argument("--input-image", type=Path, default=None, help="Head or brain image to be labeled.")
    req.add_argument("--atlas-dir", type=Path, default=None, help="Directory containing atlases and segmentations.")
    req.add_argument("--output-root", type=str, default=None, help="Root (path prefix) for output images.")

    parser.add_argument("--config", type=Path, default=None, help="Optional YAML config; flags override its values.")
    parser.add_argument(
        "--input-mask",
        type=Path,
        default=None,
        help="Mask in which labeling is performed. If omitted, JLF runs in all voxels where atlases are not unanimous.",
    )
    parser.add_argument(
        "--label-interpolation-sigma",
        type=str,
        default=None,
        help=f"Smoothing sigma for label probabilities during resampling (default: {DEFAULT_LABEL_INTERPOLATION_SIGMA}).",
    )
    parser.add_argument(
        "--keep-deformed-atlases",
        type=int,
        default=None,
        help="1 to copy deformed atlases and segmentations to the output directory (default: 0).",
    )
    parser.add_argument(
        "--rigid-search-params",
        type=int,
        nargs=3,
        default=None,
        metavar=("POINTS", "ROT_SIGMA", "TRANS_SIGMA"),
        help=(
            "Rigid search: number of points, rotation sigma (degrees), translation sigma (mm) "
            f"(default: {' '.join(str(v) for v in DEFAULT_RIGID_SEARCH_PARAMS)})."
        ),
    )
    parser.add_argument(
        "--registration-mask",
        type=Path,
        default=None,
        help="Mask in input image space for registration, e.g. a dilated brain mask.",
    )
    parser.add_argument("--threads", type=int, default=None, help="Threads for greedy (default: $NSLOTS or 1).")
    parser.add_argument(
        "--time",
        dest="time_processes",
        type=int,
        default=None,
        help="1 to wrap each call in GNU `time -v` for profiling (default: 0).",
    )
    parser.add_argument(
        "--voting-method",
        type=str,
        default=None,
        help=f"'Joint' or 'Gauss', optionally with parameters, passed to label_fusion (default: {DEFAULT_VOTING_METHOD}).",
    )
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv:
        parser.print_help()
        raise SystemExit(1)
    return parser.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> Dict:
    overrides = {
        "input_image": args.input_image,
        "atlas_dir": args.atlas_dir,
        "output_root": args.output_root,
        "input_mask": args.input_mask,
        "registration_mask": args.registration_mask,
        "label_interpolation_sigma": args.label_interpolation_sigma,
        "keep_deformed_atlases": args.keep_deformed_atlases,
        "rigid_search_params": args.rigid_search_params,
        "threads": args.threads,
        "time_processes": args.time_processes,
        "voting_method": args.voting_method,
    }
    return {k: v for k, v in overrides.items() if v is not None}


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    try:
        cfg = load_config(args.config, overrides_from_args(args))
        FusionRunner(cfg).run()
    except FusionError as exc:
        print(f"[greedy-jlf] ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
