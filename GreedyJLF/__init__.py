"""Multi-atlas segmentation with greedy registration and joint label fusion.

Entry points live in `GreedyJLF.cli`; the run itself is `GreedyJLF.pipeline.FusionRunner`.
"""
