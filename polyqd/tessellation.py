"""
Generator command specification.

A CommandSpec is an immutable value naming every flag the tessellation
generator accepts. Options are applied with `with_options`, which returns
a new validated value; `build_args` turns it into the ordered flag/value
argument vector and `run` launches the generator.
"""
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .constants import DEFAULT_CONSTANTS
from .errors import InvalidInputError
from .utils import run_command

logger = logging.getLogger(__name__)

# (field, flag) in the order they appear on the command line
FLAG_ORDER: Tuple[Tuple[str, str], ...] = (
    ("n", "-n"),
    ("domain", "-domain"),
    ("morpho", "-morpho"),
    ("morphooptiini", "-morphooptiini"),
    ("reg", "-reg"),
    ("fmax", "-fmax"),
    ("sel", "-sel"),
    ("mloop", "-mloop"),
    ("output", "-o"),
    ("format", "-format"),
)

REG_VALUES = ("0", "1")


@dataclass(frozen=True)
class CommandSpec:
    """One generator invocation; unset options produce no flag"""
    n: str
    morpho: str
    domain: Optional[str] = None
    morphooptiini: Optional[str] = None
    reg: Optional[str] = None
    fmax: Optional[str] = None
    sel: Optional[str] = None
    mloop: Optional[str] = None
    output: Optional[str] = None
    format: Optional[str] = None

    def __post_init__(self):
        if self.reg is not None and self.reg not in REG_VALUES:
            raise InvalidInputError(f"Regularization flag must be '0' or '1', got {self.reg!r}")
        for name, _ in FLAG_ORDER:
            value = getattr(self, name)
            if isinstance(value, Path):
                object.__setattr__(self, name, str(value))

    def with_options(self, **options: Optional[Union[str, Path]]) -> "CommandSpec":
        """Return a copy with the given options set (None leaves a field as is)"""
        changes = {k: v for k, v in options.items() if v is not None}
        return replace(self, **changes)

    def build_args(self) -> List[str]:
        args: List[str] = []
        for name, flag in FLAG_ORDER:
            value = getattr(self, name)
            if value is not None:
                args.extend([flag, str(value)])
        return args

    def command(self, executable: str = DEFAULT_CONSTANTS['generator'].EXECUTABLE) -> List[str]:
        """Full argument vector including the rc-file and module selectors"""
        generator = DEFAULT_CONSTANTS['generator']
        return [executable, *generator.RCFILE_FLAGS, generator.MODULE_FLAG, *self.build_args()]

    def run(self, executable: str = DEFAULT_CONSTANTS['generator'].EXECUTABLE,
            min_free_memory_gb: float = 0.0) -> None:
        run_command(self.command(executable), min_free_memory_gb=min_free_memory_gb)


def morphooptiini_from(tess_file: Union[str, Path]) -> str:
    """Seed coordinates and weights both from an existing tessellation"""
    return f"coo:file({tess_file}),weight:file({tess_file})"
