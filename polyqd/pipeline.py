"""
Command dispatch for the specimen pipeline.

COMMANDS maps each CLI command to its flag schema and the stage(s) it
runs. The CLI builds its subparsers from this table and calls `dispatch`.
"""
import argparse
import math
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict

from .config_manager import PipelineSettings, SpecDims, Specification
from .constants import DEFAULT_CONSTANTS
from .geometry import GmshGeoBackend
from .stages import GeometryCorrection, MeshStage, RegStage, TessStage

logger = logging.getLogger(__name__)


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if not math.isfinite(number):
        raise argparse.ArgumentTypeError(f"must be finite: {value}")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number


def positive_number(value: str) -> str:
    """Validate a positive number but pass the original text through"""
    positive_float(value)
    return value


def positive_int(value: str) -> str:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return value


def non_empty(value: str) -> str:
    if not value.strip():
        raise argparse.ArgumentTypeError("must not be empty")
    return value


@dataclass
class CommandEntry:
    """One CLI command: help text, flag schema and stage invocation"""
    help: str
    add_arguments: Callable[[argparse.ArgumentParser], None]
    handler: Callable[[argparse.Namespace, PipelineSettings], Any]


def _add_tess_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('-n', dest='n', required=True, type=non_empty,
                        help='Number of grains (or generator expression)')
    parser.add_argument('--dims', nargs=3, required=True, type=positive_float,
                        metavar=('DX', 'DY', 'DZ'), help='Specimen extents')
    parser.add_argument('--morpho', type=non_empty,
                        default=DEFAULT_CONSTANTS['generator'].MORPHO_DEFAULT,
                        help='Grain morphology (default: %(default)s)')


def _add_reg_arguments(parser: argparse.ArgumentParser, with_sel: bool = True) -> None:
    generator = DEFAULT_CONSTANTS['generator']
    parser.add_argument('--fmax', type=positive_number, default=generator.FMAX_DEFAULT,
                        help='Maximum flatness fault in degrees (default: %(default)s)')
    if with_sel:
        parser.add_argument('--sel', type=positive_number,
                            help='Small edge length (default: chosen by the generator)')
    parser.add_argument('--mloop', type=positive_int, default=generator.MLOOP_DEFAULT,
                        help='Maximum regularization loops (default: %(default)s)')


def _add_mesh_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--cl', required=True, type=positive_number,
                        help='Characteristic mesh length')
    parser.add_argument('-o', '--output', required=True, type=non_empty,
                        help='Mesh file, relative to the cache directory parent')
    parser.add_argument('--template', help='Custom meshing procedure (default: bundled template)')


def _add_regmesh_arguments(parser: argparse.ArgumentParser) -> None:
    _add_reg_arguments(parser, with_sel=False)
    _add_mesh_arguments(parser)


def _correction(settings: PipelineSettings) -> GeometryCorrection:
    backend = GmshGeoBackend(
        tolerance_deg=settings.flatness_tolerance_deg,
        max_relative_offset=settings.max_relative_offset,
    )
    return GeometryCorrection(backend, settings.flatness_tolerance_deg, settings.correction_sweeps)


def run_tess(args: argparse.Namespace, settings: PipelineSettings) -> None:
    spec = Specification(dims=SpecDims(*args.dims), n=args.n, morpho=args.morpho)
    TessStage(
        spec,
        layout=settings.layout,
        executable=settings.neper_executable,
        min_free_memory_gb=settings.min_free_memory_gb,
    ).run()


def _reg_stage(args: argparse.Namespace, settings: PipelineSettings, sel) -> RegStage:
    return RegStage(
        layout=settings.layout,
        fmax=args.fmax,
        sel=sel,
        mloop=args.mloop,
        executable=settings.neper_executable,
        correction=_correction(settings),
        min_free_memory_gb=settings.min_free_memory_gb,
    )


def _mesh_stage(args: argparse.Namespace, settings: PipelineSettings) -> MeshStage:
    return MeshStage(
        args.cl,
        args.output,
        layout=settings.layout,
        executable=settings.gmsh_executable,
        template=args.template or settings.mesh_template,
        min_free_memory_gb=settings.min_free_memory_gb,
    )


def run_reg(args: argparse.Namespace, settings: PipelineSettings) -> Dict[str, Any]:
    return _reg_stage(args, settings, args.sel).run()


def run_mesh(args: argparse.Namespace, settings: PipelineSettings) -> None:
    _mesh_stage(args, settings).run()


def run_regmesh(args: argparse.Namespace, settings: PipelineSettings) -> Dict[str, Any]:
    # Small-edge threshold matches the element size of the mesh
    mesh = _mesh_stage(args, settings)
    summary = _reg_stage(args, settings, args.cl).run()
    mesh.run()
    return summary


COMMANDS: Dict[str, CommandEntry] = {
    'tess': CommandEntry('Tessellate a new specimen', _add_tess_arguments, run_tess),
    'reg': CommandEntry('Regularize the cached tessellation', _add_reg_arguments, run_reg),
    'mesh': CommandEntry('Mesh the corrected geometry', _add_mesh_arguments, run_mesh),
    'regmesh': CommandEntry('Regularize, then mesh with sel = cl', _add_regmesh_arguments, run_regmesh),
}


def dispatch(args: argparse.Namespace, settings: PipelineSettings) -> Any:
    entry = COMMANDS[args.command]
    logger.debug(f"Dispatching '{args.command}' with cache {settings.cache_dir}")
    return entry.handler(args, settings)
