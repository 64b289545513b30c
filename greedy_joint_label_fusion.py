#!/usr/bin/env python3
"""
Label an image by registering a directory of atlases to it with greedy and fusing
their segmentations with label_fusion.

Usage:
    python greedy_joint_label_fusion.py --input-image subj.nii.gz --atlas-dir atlases/ --output-root out/subj_
"""

from __future__ import annotations

from GreedyJLF.cli import main


if __name__ == "__main__":
    main()
