"""
Initial tessellation stage.
"""
import logging
from typing import Optional

from ..config_manager import CacheLayout, ConfigStore, Specification
from ..constants import DEFAULT_CONSTANTS
from ..tessellation import CommandSpec

logger = logging.getLogger(__name__)


class TessStage:
    """Tessellate a fresh specimen and persist its specification"""

    def __init__(self, spec: Specification, layout: Optional[CacheLayout] = None,
                 executable: str = DEFAULT_CONSTANTS['generator'].EXECUTABLE,
                 min_free_memory_gb: float = 0.0):
        self.spec = spec
        self.layout = layout or CacheLayout()
        self.store = ConfigStore(self.layout)
        self.executable = executable
        self.min_free_memory_gb = min_free_memory_gb
        self.command = CommandSpec(n=spec.n, morpho=spec.morpho).with_options(
            domain=spec.dims.domain(),
            output=self.layout.tess_stem,
            format=DEFAULT_CONSTANTS['generator'].TESS_FORMAT,
        )

    def run(self) -> None:
        logger.info(f"Tessellating {self.spec.n} grains in {self.spec.dims.domain()} "
                    f"(morpho={self.spec.morpho})")

        # Persist first so a crashed generator still leaves recoverable state
        self.store.save(self.spec)
        self.command.run(self.executable, self.min_free_memory_gb)

        logger.info(f"Tessellation written to {self.layout.tess}")
