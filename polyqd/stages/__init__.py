"""
Pipeline stages, each wrapping one external tool invocation:

- TessStage: initial tessellation, persists the specimen specification
- RegStage: regularization followed by GeometryCorrection
- MeshStage: scripted meshing of the corrected geometry
"""

from .tess import TessStage
from .reg import RegStage, GeometryCorrection
from .mesh import MeshStage

__all__ = ["TessStage", "RegStage", "GeometryCorrection", "MeshStage"]
