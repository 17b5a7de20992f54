"""
Constants for the polyqd specimen pipeline.
Cache artifact names, CLI defaults and correction limits centralized here.
"""
from dataclasses import dataclass
from typing import Dict, Any


@dataclass
class CacheArtifacts:
    """Fixed file names inside the cache directory"""
    CACHE_DIR = "polyqd-cache"
    CONFIG = "config.json"
    TESS_STEM = "polyqd-tess"            # generator appends .tess
    TESS = "polyqd-tess.tess"
    REG_STEM = "polyqd-tess-reg"         # generator appends .geo
    REG_GEO = "polyqd-tess-reg.geo"
    GEOMETRY = "polyqd.geo"              # corrected, mesher-ready
    SCRIPT = "script.geo"


@dataclass
class GeneratorDefaults:
    """Tessellation/regularization generator flags and defaults"""
    EXECUTABLE = "neper"
    RCFILE_FLAGS = ("--rcfile", "none")
    MODULE_FLAG = "-T"
    MORPHO_DEFAULT = "graingrowth"
    FMAX_DEFAULT = "20"
    MLOOP_DEFAULT = "5"
    TESS_FORMAT = "tess"
    GEO_FORMAT = "geo"


@dataclass
class MesherDefaults:
    """Mesher invocation"""
    EXECUTABLE = "gmsh"
    NO_INTERACTION = "-"
    CL_VARIABLE = "var_cl"
    TEMPLATE_RESOURCE = "mesh_template.geo"


@dataclass
class CorrectionLimits:
    """Flatness correction thresholds"""
    FLATNESS_TOLERANCE_DEG = 1e-3
    MAX_RELATIVE_OFFSET = 0.5       # max vertex shift / surface radius
    SWEEPS_DEFAULT = 500            # hard cap on correction sweeps
    SWEEPS_MIN = 1
    SWEEPS_MAX = 5000
    STALL_SWEEPS = 25               # sweeps without a new lowest worst fault before giving up
    DEGENERATE_RATIO = 1e-9         # second singular value / first


DEFAULT_CONSTANTS: Dict[str, Any] = {
    'cache': CacheArtifacts(),
    'generator': GeneratorDefaults(),
    'mesher': MesherDefaults(),
    'correction': CorrectionLimits(),
}
