"""
Regularization stage and the geometry correction pass that follows it.

The regularizer re-derives seed coordinates and weights from the cached
raw tessellation, so the specimen parameters come from the persisted
specification rather than the command line. Its .geo output is then
flattened surface by surface and rewritten for the OpenCASCADE factory.
"""
import logging
import math
from pathlib import Path
from typing import Dict, Any, Optional

from ..config_manager import CacheLayout, ConfigStore
from ..constants import DEFAULT_CONSTANTS
from ..errors import FlatnessCorrectionFailed, InvalidInputError, MissingPrerequisiteError
from ..geometry import ElementKind, GeometryBackend, GmshGeoBackend
from ..tessellation import CommandSpec, morphooptiini_from

logger = logging.getLogger(__name__)


class GeometryCorrection:
    """Strip stale physical surfaces and flatten every surface"""

    def __init__(self, backend: Optional[GeometryBackend] = None,
                 tolerance_deg: float = DEFAULT_CONSTANTS['correction'].FLATNESS_TOLERANCE_DEG,
                 sweeps: int = DEFAULT_CONSTANTS['correction'].SWEEPS_DEFAULT,
                 stall_sweeps: int = DEFAULT_CONSTANTS['correction'].STALL_SWEEPS):
        for name, value in (("sweeps", sweeps), ("stall_sweeps", stall_sweeps)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidInputError(f"{name} must be a positive integer, got {value!r}")

        self.backend = backend or GmshGeoBackend(tolerance_deg=tolerance_deg)
        self.tolerance_deg = tolerance_deg
        self.sweeps = sweeps
        self.stall_sweeps = stall_sweeps

    def run(self, source: Path, target: Path) -> Dict[str, Any]:
        """
        Correct the regularized geometry in `source` and write `target`

        Shared vertices move when a neighbouring surface is flattened, so
        the pass repeats while the worst fault keeps improving, up to
        `sweeps` passes.

        Returns:
            Summary with cleared/corrected counts, sweeps and residual fault

        Raises:
            MissingPrerequisiteError: `source` does not exist
            FlatnessCorrectionFailed: a surface cannot be flattened
        """
        source, target = Path(source), Path(target)
        if not source.exists():
            raise MissingPrerequisiteError(source, "reg")

        model = self.backend.open(source)
        try:
            return self._correct(model, target)
        finally:
            self.backend.close(model)

    def _correct(self, model, target: Path) -> Dict[str, Any]:
        # Regularization renumbers surfaces, old physical groups are meaningless
        cleared = self.backend.clear(model, ElementKind.PHYSICAL_SURFACE)
        surface_tags = self.backend.tags_of(model, ElementKind.SURFACE)
        logger.info(f"Correcting {len(surface_tags)} surfaces ({cleared} physical surfaces cleared)")

        faults: Dict[int, float] = {}
        best = math.inf
        stalled = 0
        for sweep in range(1, self.sweeps + 1):
            for tag in surface_tags:
                self.backend.correct_flatness(model, tag)

            faults = {tag: self.backend.flatness_fault(model, tag) for tag in surface_tags}
            offenders = [tag for tag, fault in faults.items() if fault > self.tolerance_deg]
            if not offenders:
                break

            worst_tag = max(offenders, key=faults.get)
            if faults[worst_tag] < best:
                best, stalled = faults[worst_tag], 0
            else:
                stalled += 1
            logger.debug(f"Sweep {sweep}: {len(offenders)} surfaces out of tolerance, "
                         f"worst {faults[worst_tag]:.3g} deg on surface {worst_tag}")

            if stalled >= self.stall_sweeps:
                raise FlatnessCorrectionFailed(
                    worst_tag, f"fault {faults[worst_tag]:.3g} deg stopped decreasing after {sweep} sweeps"
                )
        else:
            raise FlatnessCorrectionFailed(
                worst_tag, f"fault {faults[worst_tag]:.3g} deg remains after {self.sweeps} sweeps"
            )

        self.backend.write(model, target, "occ")

        worst = max(faults.values(), default=0.0)
        logger.info(f"Corrected geometry written to {target} "
                    f"({sweep} sweep(s), worst fault {worst:.2e} deg)")
        return {
            "physical_surfaces_cleared": cleared,
            "surfaces_corrected": len(surface_tags),
            "sweeps": sweep,
            "max_fault_deg": worst,
            "output": target,
        }


class RegStage:
    """Regularize the cached tessellation, then correct its geometry"""

    def __init__(self, layout: Optional[CacheLayout] = None,
                 fmax: Optional[str] = None,
                 sel: Optional[str] = None,
                 mloop: Optional[str] = None,
                 executable: str = DEFAULT_CONSTANTS['generator'].EXECUTABLE,
                 correction: Optional[GeometryCorrection] = None,
                 min_free_memory_gb: float = 0.0):
        self.layout = layout or CacheLayout()
        self.spec = ConfigStore(self.layout).load()
        self.executable = executable
        self.correction = correction or GeometryCorrection()
        self.min_free_memory_gb = min_free_memory_gb

        generator = DEFAULT_CONSTANTS['generator']
        self.command = CommandSpec(n=self.spec.n, morpho=self.spec.morpho).with_options(
            domain=self.spec.dims.domain(),
            reg="1",
            morphooptiini=morphooptiini_from(self.layout.tess),
            output=self.layout.reg_stem,
            format=generator.GEO_FORMAT,
        ).with_options(fmax=fmax, sel=sel, mloop=mloop)

    def run(self) -> Dict[str, Any]:
        if not self.layout.tess.exists():
            raise MissingPrerequisiteError(self.layout.tess, "tess")

        logger.info(f"Regularizing {self.layout.tess} "
                    f"(fmax={self.command.fmax}, sel={self.command.sel}, mloop={self.command.mloop})")
        self.command.run(self.executable, self.min_free_memory_gb)

        return self.correction.run(self.layout.reg_geo, self.layout.geometry)
