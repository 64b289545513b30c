from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from GreedyJLF.errors import InputError


DEFAULT_LABEL_INTERPOLATION_SIGMA = "0.25mm"
DEFAULT_RIGID_SEARCH_PARAMS: Tuple[int, int, int] = (2000, 30, 40)
DEFAULT_VOTING_METHOD = "Joint[0.1,2]"


def default_threads(env: Optional[Mapping[str, str]] = None) -> int:
    """Thread count from NSLOTS (set by grid engine schedulers), else 1."""
    env = os.environ if env is None else env
    raw = (env.get("NSLOTS") or "").strip()
    if not raw:
        return 1
    try:
        value = int(raw)
    except ValueError:
        print(f"[config] WARNING: ignoring non-integer NSLOTS={raw!r}, using 1 thread.")
        return 1
    return max(1, value)


def default_tmp_root(env: Optional[Mapping[str, str]] = None) -> Optional[Path]:
    """Return $TMPDIR when it names an existing directory."""
    env = os.environ if env is None else env
    raw = env.get("TMPDIR")
    if raw and Path(raw).is_dir():
        return Path(raw)
    return None


@dataclass
class RegistrationConfig:
    """greedy parameters shared by the rigid, affine and deformable stages."""

    dimension: int = 3
    metric: str = "NCC"
    metric_radius: str = "4x4x4"
    affine_iterations: str = "100x50x50x10"
    deformable_iterations: str = "100x70x50x20"
    deformable_step: float = 1.0
    warp_precision: float = 0
    stop_on_stage_failure: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RegistrationConfig":
        defaults = cls()
        known = set(defaults.__dict__.keys())
        merged = dict(defaults.__dict__)
        for key, value in (data or {}).items():
            if key not in known:
                print(f"[config] Ignoring unknown registration option '{key}'.")
                continue
            merged[key] = value
        merged["dimension"] = _as_int("registration.dimension", merged["dimension"])
        merged["deformable_step"] = _as_float("registration.deformable_step", merged["deformable_step"])
        merged["warp_precision"] = _as_float("registration.warp_precision", merged["warp_precision"])
        merged["stop_on_stage_failure"] = _as_bool("registration.stop_on_stage_failure", merged["stop_on_stage_failure"])
        return cls(**merged)


@dataclass
class FusionConfig:
    """Top-level configuration for one joint label fusion run."""

    input_image: Path
    atlas_dir: Path
    output_root: str
    input_mask: Optional[Path] = None
    registration_mask: Optional[Path] = None
    label_interpolation_sigma: str = DEFAULT_LABEL_INTERPOLATION_SIGMA
    keep_deformed_atlases: bool = False
    rigid_search_params: Tuple[int, int, int] = DEFAULT_RIGID_SEARCH_PARAMS
    threads: int = field(default_factory=default_threads)
    time_processes: bool = False
    voting_method: str = DEFAULT_VOTING_METHOD
    greedy_exe: str = "greedy"
    fusion_exe: str = "label_fusion"
    verify_images: bool = False
    tmp_root: Optional[Path] = field(default_factory=default_tmp_root)
    registration: RegistrationConfig = field(default_factory=RegistrationConfig)

    @property
    def output_labels(self) -> Path:
        return Path(f"{self.output_root}Labels.nii.gz")

    @classmethod
    def from_dict(cls, data: Dict) -> "FusionConfig":
        missing = [k for k in ("input_image", "atlas_dir", "output_root") if not data.get(k)]
        if missing:
            flags = ", ".join("--" + k.replace("_", "-") for k in missing)
            raise InputError(f"Missing required argument(s): {flags}")

        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                print(f"[config] Ignoring unknown option '{key}'.")

        kwargs: Dict[str, Any] = {
            "input_image": Path(data["input_image"]),
            "atlas_dir": Path(data["atlas_dir"]),
            "output_root": str(data["output_root"]),
            "input_mask": _optional_path(data.get("input_mask")),
            "registration_mask": _optional_path(data.get("registration_mask")),
            "registration": RegistrationConfig.from_dict(data.get("registration")),
        }
        if data.get("label_interpolation_sigma") is not None:
            kwargs["label_interpolation_sigma"] = str(data["label_interpolation_sigma"])
        if data.get("keep_deformed_atlases") is not None:
            kwargs["keep_deformed_atlases"] = _as_bool("keep_deformed_atlases", data["keep_deformed_atlases"])
        if data.get("rigid_search_params") is not None:
            kwargs["rigid_search_params"] = _search_params(data["rigid_search_params"])
        if data.get("threads") is not None:
            kwargs["threads"] = _as_int("threads", data["threads"])
            if kwargs["threads"] < 1:
                raise InputError(f"threads must be at least 1, got {kwargs['threads']}")
        if data.get("time_processes") is not None:
            kwargs["time_processes"] = _as_bool("time_processes", data["time_processes"])
        if data.get("voting_method") is not None:
            kwargs["voting_method"] = str(data["voting_method"])
        for key in ("greedy_exe", "fusion_exe"):
            if data.get(key):
                kwargs[key] = str(data[key])
        if data.get("verify_images") is not None:
            kwargs["verify_images"] = _as_bool("verify_images", data["verify_images"])
        if data.get("tmp_root") is not None:
            kwargs["tmp_root"] = Path(data["tmp_root"])
        return cls(**kwargs)


def load_config_data(config_path: Optional[Path]) -> Dict:
    """Read a YAML config file into a plain dict (empty when no path is given)."""
    if config_path is None:
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise InputError(f"Cannot read config file {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise InputError(f"Config file {config_path} must contain a mapping.")
    return data


def load_config(config_path: Optional[Path], overrides: Optional[Dict] = None) -> FusionConfig:
    """Load YAML config and layer non-None overrides (typically CLI flags) on top."""
    data = load_config_data(config_path)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return FusionConfig.from_dict(data)


def _optional_path(value: Any) -> Optional[Path]:
    if value is None or value == "":
        return None
    return Path(value)


def _search_params(value: Any) -> Tuple[int, int, int]:
    if isinstance(value, str):
        value = value.replace(",", " ").split()
    if not isinstance(value, Sequence) or len(value) != 3:
        raise InputError("rigid_search_params needs exactly three integers: points, rotation sigma, translation sigma.")
    points, rotation, translation = (_as_int("rigid_search_params", v) for v in value)
    return (points, rotation, translation)


def _as_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise InputError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{key} must be an integer, got {value!r}") from exc


def _as_float(key: str, value: Any) -> float:
    if isinstance(value, bool):
        raise InputError(f"{key} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InputError(f"{key} must be a number, got {value!r}") from exc


_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _as_bool(key: str, value: Any) -> bool:
    """Accept YAML booleans, 0/1 and the usual true/false spellings; reject anything else."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise InputError(f"{key} must be a boolean (true/false or 0/1), got {value!r}")
