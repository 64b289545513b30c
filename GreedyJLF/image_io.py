from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import SimpleITK as sitk


@dataclass(frozen=True)
class ImageHeader:
    dimension: int
    size: Tuple[int, ...]
    spacing: Tuple[float, ...]


def read_image_header(path: Path) -> Optional[ImageHeader]:
    """Read geometry without loading voxel data; None if the file is not a readable image."""
    if not path.exists():
        return None
    reader = sitk.ImageFileReader()
    reader.SetFileName(str(path))
    try:
        reader.ReadImageInformation()
    except RuntimeError:
        return None
    return ImageHeader(
        dimension=int(reader.GetDimension()),
        size=tuple(int(s) for s in reader.GetSize()),
        spacing=tuple(float(s) for s in reader.GetSpacing()),
    )


def is_readable_image(path: Path) -> bool:
    return read_image_header(path) is not None
