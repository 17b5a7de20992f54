"""
polyqd - cuboidal polycrystal specimen pipeline

Three cached stages, each driving an external tool:
- tess: initial tessellation (neper)
- reg: regularization (neper) plus surface flatness correction
- mesh: scripted meshing (gmsh)
"""

from .config_manager import CacheLayout, ConfigStore, SpecDims, Specification, SettingsManager
from .tessellation import CommandSpec
from .stages import TessStage, RegStage, GeometryCorrection, MeshStage
from .utils import run_command

__version__ = "1.0.0"
__all__ = [
    "CacheLayout",
    "ConfigStore",
    "SpecDims",
    "Specification",
    "SettingsManager",
    "CommandSpec",
    "TessStage",
    "RegStage",
    "GeometryCorrection",
    "MeshStage",
    "run_command",
]
