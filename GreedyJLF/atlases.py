from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

from GreedyJLF.errors import InputError


MANIFEST_NAME = "atlases.csv"
LABEL_SUFFIX = "_Seg.nii.gz"


@dataclass(frozen=True)
class AtlasEntry:
    """One training exemplar: a gray image and its label map."""

    name: str
    image: Path
    labels: Path


def resolve_atlases(atlas_dir: Path) -> List[AtlasEntry]:
    """Return the atlases in `atlas_dir`, from `atlases.csv` if present, else by filename convention."""
    if not atlas_dir.is_dir():
        raise InputError(f"Cannot find atlas directory {atlas_dir}")
    manifest = atlas_dir / MANIFEST_NAME
    if manifest.exists():
        atlases = load_manifest(manifest)
        source = str(manifest)
    else:
        atlases = scan_atlas_dir(atlas_dir)
        source = f"{atlas_dir}/*{LABEL_SUFFIX}"
    if not atlases:
        raise InputError(f"No atlases found in {source}")
    return atlases


def load_manifest(manifest: Path) -> List[AtlasEntry]:
    """Parse `<gray>,<label>` lines; relative paths resolve against the manifest's directory."""
    try:
        lines = manifest.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise InputError(f"Cannot read atlas manifest {manifest}: {exc}") from exc

    base = manifest.parent
    atlases: List[AtlasEntry] = []
    used: Set[str] = set()
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = [p.strip() for p in line.split(",")]
        if len(parts) != 2 or not all(parts):
            raise InputError(f"{manifest}:{lineno}: expected '<gray image>,<label image>', got {raw!r}")
        image = _resolve(base, parts[0])
        labels = _resolve(base, parts[1])
        name = _unique_name(_nifti_stem(image), used)
        atlases.append(AtlasEntry(name=name, image=image, labels=labels))
    return atlases


def scan_atlas_dir(atlas_dir: Path) -> List[AtlasEntry]:
    """Pair each `<id>_Seg.nii.gz` with `<id>.nii.gz` in the same directory."""
    atlases: List[AtlasEntry] = []
    for seg in sorted(atlas_dir.glob(f"*{LABEL_SUFFIX}")):
        atlas_id = seg.name[: -len(LABEL_SUFFIX)]
        atlases.append(AtlasEntry(name=atlas_id, image=atlas_dir / f"{atlas_id}.nii.gz", labels=seg))
    return atlases


def is_same_image(atlas: AtlasEntry, input_image: Path) -> bool:
    """Leave-one-out check; paths are compared as given, not resolved."""
    return Path(atlas.image) == Path(input_image)


def _resolve(base: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else base / path


def _nifti_stem(path: Path) -> str:
    name = path.name
    for suf in (".nii.gz", ".nii"):
        if name.endswith(suf):
            return name[: -len(suf)]
    return path.stem


def _unique_name(stem: str, used: Set[str]) -> str:
    name = stem
    suffix = 2
    while name in used:
        name = f"{stem}_{suffix}"
        suffix += 1
    used.add(name)
    return name
