"""
Meshing stage: render a gmsh procedure script and run the mesher on it.
"""
import logging
from pathlib import Path
from typing import Optional, Union

from ..config_manager import CacheLayout
from ..constants import DEFAULT_CONSTANTS
from ..errors import InvalidInputError, MissingPrerequisiteError
from ..utils import run_command

logger = logging.getLogger(__name__)

BUNDLED_TEMPLATE = Path(__file__).parent.parent / "resources" / DEFAULT_CONSTANTS['mesher'].TEMPLATE_RESOURCE


def render_script(cl: str, template: str, output: str) -> str:
    """
    Assemble the procedure: length assignment, template body, save directive

    The script lives in the cache directory, so a relative output is
    addressed from the cache directory's parent.
    """
    save_path = output if Path(output).is_absolute() else f"../{output}"
    return "\n".join([
        f"{DEFAULT_CONSTANTS['mesher'].CL_VARIABLE} = {cl};",
        template.rstrip("\n"),
        f'Save "{save_path}";',
    ])


class MeshStage:
    """Mesh the corrected geometry with a given characteristic length"""

    def __init__(self, cl: str, output: str, layout: Optional[CacheLayout] = None,
                 executable: str = DEFAULT_CONSTANTS['mesher'].EXECUTABLE,
                 template: Optional[Union[str, Path]] = None,
                 min_free_memory_gb: float = 0.0):
        try:
            cl_value = float(cl)
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Characteristic length is not a number: {cl!r}") from e
        if not cl_value > 0:
            raise InvalidInputError(f"Characteristic length must be positive, got {cl}")
        if not output:
            raise InvalidInputError("Mesh output file name is required")

        self.cl = str(cl)
        self.output = str(output)
        self.layout = layout or CacheLayout()
        self.executable = executable
        self.min_free_memory_gb = min_free_memory_gb

        # The bundled template includes the corrected geometry from the cache
        self.requires_geometry = template is None
        template_path = Path(template) if template is not None else BUNDLED_TEMPLATE
        try:
            template_text = template_path.read_text()
        except OSError as e:
            raise InvalidInputError(f"Cannot read mesh template {template_path}: {e}") from e

        self.script = render_script(self.cl, template_text, self.output)

    def run(self) -> Path:
        if self.requires_geometry and not self.layout.geometry.exists():
            raise MissingPrerequisiteError(self.layout.geometry, "reg")

        self.layout.ensure()
        self.layout.script.write_text(self.script)
        logger.debug(f"Wrote mesh script to {self.layout.script}")

        logger.info(f"Meshing with cl={self.cl} -> {self.output}")
        run_command(
            [self.executable, self.layout.script, DEFAULT_CONSTANTS['mesher'].NO_INTERACTION],
            min_free_memory_gb=self.min_free_memory_gb,
        )
        return self.layout.script
