"""
Geometry backend for the correction pass.

GmshGeoBackend drives the gmsh Python API: it opens the regularized .geo
file, queries surfaces and physical groups, moves points onto best-fit
planes through the built-in kernel and writes the model back out for the
OpenCASCADE factory. Plane fitting and the fault measure are plain numpy.

Any other backend exposing the GeometryBackend methods can stand in for
GmshGeoBackend.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Dict, List, Optional, Protocol, Tuple

import gmsh
import numpy as np

from .constants import DEFAULT_CONSTANTS
from .errors import FlatnessCorrectionFailed, GeometryError

logger = logging.getLogger(__name__)


class ElementKind(Enum):
    """Model entities and physical groups, as (dimension, physical)"""
    POINT = (0, False)
    CURVE = (1, False)
    SURFACE = (2, False)
    VOLUME = (3, False)
    PHYSICAL_POINT = (0, True)
    PHYSICAL_CURVE = (1, True)
    PHYSICAL_SURFACE = (2, True)
    PHYSICAL_VOLUME = (3, True)

    @property
    def dim(self) -> int:
        return self.value[0]

    @property
    def physical(self) -> bool:
        return self.value[1]


# Header line written for each output format
FACTORIES = {
    "occ": 'SetFactory("OpenCASCADE");',
    "geo": None,
}


@dataclass(frozen=True)
class GmshModel:
    """Handle on the model a GmshGeoBackend holds open"""
    source: Path
    session: int


@contextmanager
def _gmsh_errors(action: str):
    try:
        yield
    except GeometryError:
        raise
    except Exception as e:
        raise GeometryError(f"gmsh failed to {action}: {e}") from e


def best_fit_plane(coords: np.ndarray, tag: int) -> Tuple[np.ndarray, np.ndarray, float]:
    """
    Least-squares plane through the vertices of a surface

    Returns:
        (centroid, unit normal, radius), radius being the largest vertex
        distance from the centroid

    Raises:
        FlatnessCorrectionFailed: fewer than three vertices, or collinear ones
    """
    if len(coords) < 3:
        raise FlatnessCorrectionFailed(tag, f"only {len(coords)} distinct vertices")

    centroid = coords.mean(axis=0)
    _, singular, vt = np.linalg.svd(coords - centroid)
    if singular[0] == 0 or singular[1] <= DEFAULT_CONSTANTS['correction'].DEGENERATE_RATIO * singular[0]:
        raise FlatnessCorrectionFailed(tag, "vertices are collinear")

    radius = float(np.max(np.linalg.norm(coords - centroid, axis=1)))
    return centroid, vt[-1], radius


def polygon_fault(polygon: np.ndarray, normal: np.ndarray, scale: float) -> float:
    """Largest angle (deg) between a local polygon normal and the plane normal"""
    fault = 0.0
    count = len(polygon)
    for i in range(count):
        before = polygon[i - 1] - polygon[i]
        after = polygon[(i + 1) % count] - polygon[i]
        local = np.cross(after, before)
        norm = np.linalg.norm(local)
        # Straight corners carry no orientation
        if norm <= 1e-12 * scale * scale:
            continue
        cosine = min(1.0, abs(float(np.dot(local / norm, normal))))
        fault = max(fault, float(np.degrees(np.arccos(cosine))))
    return fault


class GeometryBackend(Protocol):
    """Capabilities the correction pass needs from a geometry library"""

    def open(self, path: Path): ...

    def close(self, model) -> None: ...

    def clear(self, model, kind: ElementKind) -> int: ...

    def tags_of(self, model, kind: ElementKind) -> List[int]: ...

    def flatness_fault(self, model, tag: int) -> float: ...

    def correct_flatness(self, model, tag: int) -> float: ...

    def write(self, model, path: Path, fmt: str) -> Path: ...


class GmshGeoBackend:
    """
    Geometry backend over the gmsh API

    gmsh holds one global model, so only one model is open at a time:
    opening a file, from any backend, invalidates earlier handles.
    """
    _active_session = 0

    def __init__(self, tolerance_deg: float = DEFAULT_CONSTANTS['correction'].FLATNESS_TOLERANCE_DEG,
                 max_relative_offset: float = DEFAULT_CONSTANTS['correction'].MAX_RELATIVE_OFFSET):
        self.tolerance_deg = tolerance_deg
        self.max_relative_offset = max_relative_offset
        self._initialized_here = False

    def open(self, path: Path) -> GmshModel:
        path = Path(path)
        if not path.is_file():
            raise GeometryError(f"Cannot read geometry {path}: no such file")

        if not gmsh.isInitialized():
            gmsh.initialize(readConfigFiles=False)
            self._initialized_here = True
        gmsh.option.setNumber("General.Terminal", 0)
        gmsh.clear()
        GmshGeoBackend._active_session += 1

        try:
            with _gmsh_errors(f"open {path}"):
                gmsh.open(str(path))
                surfaces = gmsh.model.getEntities(2)
        except GeometryError:
            self.close()
            raise

        logger.debug(f"Opened {path}: {len(surfaces)} surfaces")
        return GmshModel(path, GmshGeoBackend._active_session)

    def close(self, model: Optional[GmshModel] = None) -> None:
        if model is not None and model.session != GmshGeoBackend._active_session:
            return
        GmshGeoBackend._active_session += 1
        if gmsh.isInitialized():
            gmsh.clear()
            if self._initialized_here:
                gmsh.finalize()
                self._initialized_here = False

    def _activate(self, model: GmshModel) -> None:
        if model.session != GmshGeoBackend._active_session or not gmsh.isInitialized():
            raise GeometryError(f"Geometry {model.source} is no longer open")

    def clear(self, model: GmshModel, kind: ElementKind) -> int:
        """Remove every physical group of a kind, returning how many were removed"""
        if not kind.physical:
            raise ValueError(f"Only physical groups can be cleared, got {kind.name}")
        self._activate(model)

        with _gmsh_errors(f"remove {kind.name.lower()} groups"):
            groups = gmsh.model.getPhysicalGroups(kind.dim)
            if groups:
                gmsh.model.removePhysicalGroups(groups)
        return len(groups)

    def tags_of(self, model: GmshModel, kind: ElementKind) -> List[int]:
        self._activate(model)
        with _gmsh_errors(f"list {kind.name.lower()} tags"):
            if kind.physical:
                dimtags = gmsh.model.getPhysicalGroups(kind.dim)
            else:
                dimtags = gmsh.model.getEntities(kind.dim)
        return [tag for _, tag in dimtags]

    def _curve_ends(self, tag: int) -> Tuple[int, int]:
        points = [abs(t) for _, t in gmsh.model.getBoundary([(1, tag)], combined=False, oriented=False)]
        if not points:
            raise GeometryError(f"Curve {tag} has no end points")
        return points[0], points[-1]

    def surface_loops(self, model: GmshModel, tag: int) -> List[List[int]]:
        """Point tags around each boundary loop of a surface, in loop order"""
        self._activate(model)
        with _gmsh_errors(f"read the boundary of surface {tag}"):
            curves = [t for _, t in gmsh.model.getBoundary([(2, tag)], combined=False, oriented=True)]
            ends = {abs(c): self._curve_ends(abs(c)) for c in curves}

        loops, loop = [], []
        for signed in curves:
            begin, end = ends[abs(signed)]
            if signed < 0:
                begin, end = end, begin
            loop.append(begin)
            if end == loop[0]:
                loops.append(loop)
                loop = []
        if loop:
            loops.append(loop)
        return loops

    def point_coords(self, model: GmshModel, tag: int) -> np.ndarray:
        self._activate(model)
        with _gmsh_errors(f"read point {tag}"):
            return np.array(gmsh.model.getValue(0, tag, []), dtype=float)

    def _surface(self, model: GmshModel, tag: int):
        loops = self.surface_loops(model, tag)
        point_tags = list(dict.fromkeys(p for loop in loops for p in loop))
        positions = {p: self.point_coords(model, p) for p in point_tags}
        coords = np.array([positions[p] for p in point_tags]).reshape(-1, 3)
        centroid, normal, radius = best_fit_plane(coords, tag)
        return loops, point_tags, coords, positions, centroid, normal, radius

    @staticmethod
    def _fault(loops: List[List[int]], positions: Dict[int, np.ndarray],
               normal: np.ndarray, scale: float) -> float:
        fault = 0.0
        for loop in loops:
            polygon = np.array([positions[p] for p in loop])
            fault = max(fault, polygon_fault(polygon, normal, scale))
        return fault

    def flatness_fault(self, model: GmshModel, tag: int) -> float:
        loops, _, _, positions, _, normal, radius = self._surface(model, tag)
        return self._fault(loops, positions, normal, radius)

    def correct_flatness(self, model: GmshModel, tag: int) -> float:
        """
        Project a surface's vertices onto its best-fit plane

        Returns:
            Residual flatness fault in degrees

        Raises:
            FlatnessCorrectionFailed: degenerate surface, or flattening would
                move a vertex too far relative to the surface size
        """
        loops, point_tags, coords, positions, centroid, normal, radius = self._surface(model, tag)

        fault = self._fault(loops, positions, normal, radius)
        if fault <= self.tolerance_deg:
            return fault

        offsets = (coords - centroid) @ normal
        max_offset = float(np.max(np.abs(offsets)))
        if max_offset > self.max_relative_offset * radius:
            raise FlatnessCorrectionFailed(
                tag, f"vertex offset {max_offset:.3g} exceeds {self.max_relative_offset} x radius {radius:.3g}"
            )

        with _gmsh_errors(f"move the vertices of surface {tag}"):
            for point_tag, offset in zip(point_tags, offsets):
                dx, dy, dz = (-offset * normal).tolist()
                gmsh.model.geo.translate([(0, point_tag)], dx, dy, dz)
            gmsh.model.geo.synchronize()

        residual = self.flatness_fault(model, tag)
        if residual > self.tolerance_deg:
            raise FlatnessCorrectionFailed(tag, f"residual fault {residual:.3g} deg after projection")
        logger.debug(f"Surface {tag}: moved {len(point_tags)} vertices by up to {max_offset:.3g}")
        return residual

    def write(self, model: GmshModel, path: Path, fmt: str = "occ") -> Path:
        if fmt not in FACTORIES:
            raise ValueError(f"Unsupported geometry format: {fmt}. Allowed: {sorted(FACTORIES)}")
        self._activate(model)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        # gmsh picks the writer from the extension
        with TemporaryDirectory(prefix="polyqd-gmsh-") as temp_dir:
            unrolled = Path(temp_dir) / "model.geo_unrolled"
            with _gmsh_errors(f"write {path}"):
                gmsh.write(str(unrolled))
            lines = [line for line in unrolled.read_text().splitlines()
                     if not line.startswith("SetFactory(")]

        header = FACTORIES[fmt]
        if header:
            lines.insert(0, header)
        path.write_text("\n".join(lines) + "\n")
        logger.debug(f"Wrote {fmt} geometry to {path}")
        return path
