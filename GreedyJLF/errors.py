from __future__ import annotations


class FusionError(RuntimeError):
    """Fatal error that stops a label fusion run."""


class ToolNotFoundError(FusionError):
    """A required external executable is not on PATH."""


class InputError(FusionError):
    """A required input file, mask or atlas manifest is missing or malformed."""


class WorkingDirectoryError(FusionError):
    """The output or working directory could not be created."""


class InsufficientAtlasesError(FusionError):
    """Too few atlases registered successfully to run fusion."""
