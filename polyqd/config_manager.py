"""
Configuration management for the specimen pipeline.

Two kinds of configuration live here:
- the persisted specimen Specification, written by `tess` into the cache
  and read back verbatim by `reg`
- pipeline settings (tool paths, cache root, correction limits), loaded
  from JSON and merged over the bundled defaults
"""
import json
import logging
import math
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional, Union

from .constants import DEFAULT_CONSTANTS
from .errors import InvalidInputError, MalformedConfigError, MissingPrerequisiteError
from .utils import format_decimal

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = Path(__file__).parent / "configs" / "default.json"


@dataclass(frozen=True)
class SpecDims:
    """Specimen extents, all strictly positive"""
    dx: float
    dy: float
    dz: float

    def __post_init__(self):
        for name in ("dx", "dy", "dz"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInputError(f"{name} must be a number, got {value!r}")
            if not value > 0 or not math.isfinite(value):
                raise InvalidInputError(f"{name} must be a finite positive number, got {value}")
            object.__setattr__(self, name, float(value))

    def domain(self) -> str:
        """Generator domain descriptor, e.g. cube(1,1,1)"""
        return "cube({},{},{})".format(
            format_decimal(self.dx), format_decimal(self.dy), format_decimal(self.dz)
        )


@dataclass(frozen=True)
class Specification:
    """Specimen specification shared between tess and reg"""
    dims: SpecDims
    n: str
    morpho: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.n, str) or not self.n.strip():
            raise InvalidInputError(f"Grain count must be a non-empty string, got {self.n!r}")
        # Only a caller that supplied no morphology gets the default
        if self.morpho is None:
            object.__setattr__(self, "morpho", DEFAULT_CONSTANTS['generator'].MORPHO_DEFAULT)
        elif not isinstance(self.morpho, str) or not self.morpho.strip():
            raise InvalidInputError(f"Morphology must be a non-empty string, got {self.morpho!r}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Specification":
        """Rebuild a persisted Specification verbatim (no defaults applied)"""
        dims = data["dims"]
        morpho = data["morpho"]
        if morpho is None:
            raise ValueError("morpho is null")
        return cls(
            dims=SpecDims(dx=dims["dx"], dy=dims["dy"], dz=dims["dz"]),
            n=str(data["n"]),
            morpho=morpho,
        )


@dataclass(frozen=True)
class CacheLayout:
    """Paths of every artifact under one cache root"""
    root: Path = Path(DEFAULT_CONSTANTS['cache'].CACHE_DIR)

    def __post_init__(self):
        object.__setattr__(self, "root", Path(self.root))

    def _path(self, name: str) -> Path:
        return self.root / name

    @property
    def config(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].CONFIG)

    @property
    def tess_stem(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].TESS_STEM)

    @property
    def tess(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].TESS)

    @property
    def reg_stem(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].REG_STEM)

    @property
    def reg_geo(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].REG_GEO)

    @property
    def geometry(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].GEOMETRY)

    @property
    def script(self) -> Path:
        return self._path(DEFAULT_CONSTANTS['cache'].SCRIPT)

    def ensure(self) -> Path:
        """Create the cache directory if absent (idempotent)"""
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root


class ConfigStore:
    """Persist the Specification so later stages recover it"""

    def __init__(self, layout: CacheLayout):
        self.layout = layout

    @property
    def path(self) -> Path:
        return self.layout.config

    def save(self, spec: Specification) -> Path:
        self.layout.ensure()
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(spec.to_dict(), f, indent=2)
        logger.debug(f"Saved specification to {self.path}")
        return self.path

    def load(self) -> Specification:
        """
        Read the persisted Specification

        Raises:
            MissingPrerequisiteError: tess never ran against this cache
            MalformedConfigError: file is not a valid specification
        """
        if not self.path.exists():
            raise MissingPrerequisiteError(self.path, "tess")

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedConfigError(self.path, str(e)) from e

        if not isinstance(data, dict):
            raise MalformedConfigError(self.path, "expected a JSON object")

        try:
            spec = Specification.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedConfigError(self.path, f"{type(e).__name__}: {e}") from e

        logger.debug(f"Loaded specification from {self.path}: {spec}")
        return spec


@dataclass
class PipelineSettings:
    """Resolved pipeline settings"""
    cache_dir: str
    neper_executable: str
    gmsh_executable: str
    flatness_tolerance_deg: float
    max_relative_offset: float
    correction_sweeps: int
    mesh_template: Optional[str]
    min_free_memory_gb: float

    @property
    def layout(self) -> CacheLayout:
        return CacheLayout(Path(self.cache_dir))


class SettingsManager:
    """Load pipeline settings from JSON with validation"""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self.config = self._load_and_validate_config()
        self.settings = PipelineSettings(**self.config)

    def _read(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, encoding="utf-8") as f:
                config = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidInputError(f"Failed to load settings from {path}: {e}") from e
        if not isinstance(config, dict):
            raise InvalidInputError(f"Settings file {path} must contain a JSON object")
        return config

    def _load_and_validate_config(self) -> Dict[str, Any]:
        config = self._read(DEFAULT_SETTINGS_FILE)

        if self.config_file:
            overrides = self._read(self.config_file)
            known = {f.name for f in fields(PipelineSettings)}
            for key in list(overrides):
                if key not in known:
                    logger.warning(f"Ignoring unknown settings key '{key}' in {self.config_file}")
                    overrides.pop(key)
            config.update(overrides)
            logger.info(f"Loaded settings from {self.config_file}")

        self._validate_correction_config(config)
        self._validate_tools_config(config)
        return config

    def _validate_correction_config(self, config: Dict[str, Any]) -> None:
        limits = DEFAULT_CONSTANTS['correction']

        try:
            config["flatness_tolerance_deg"] = float(config["flatness_tolerance_deg"])
            config["max_relative_offset"] = float(config["max_relative_offset"])
            config["correction_sweeps"] = int(config["correction_sweeps"])
            config["min_free_memory_gb"] = float(config["min_free_memory_gb"])
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid numeric setting: {e}") from e

        if config["flatness_tolerance_deg"] <= 0:
            raise InvalidInputError("flatness_tolerance_deg must be positive")
        if config["max_relative_offset"] <= 0:
            raise InvalidInputError("max_relative_offset must be positive")

        sweeps = config["correction_sweeps"]
        if not (limits.SWEEPS_MIN <= sweeps <= limits.SWEEPS_MAX):
            config["correction_sweeps"] = max(limits.SWEEPS_MIN, min(limits.SWEEPS_MAX, sweeps))
            logger.warning(f"Clamped correction_sweeps to {config['correction_sweeps']} (was {sweeps})")

    def _validate_tools_config(self, config: Dict[str, Any]) -> None:
        for key in ("cache_dir", "neper_executable", "gmsh_executable"):
            if not isinstance(config.get(key), str) or not config[key]:
                raise InvalidInputError(f"{key} must be a non-empty string")
        template = config.get("mesh_template")
        if template is not None and not isinstance(template, str):
            raise InvalidInputError("mesh_template must be a path or null")

    def override(self, **values: Any) -> PipelineSettings:
        """Apply CLI overrides that are not None"""
        for key, value in values.items():
            if value is not None:
                setattr(self.settings, key, value)
        return self.settings
