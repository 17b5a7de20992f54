"""
CLI entry point for the polycrystal specimen pipeline
"""

import argparse
import sys
import logging
import traceback
from typing import List, Optional

from .config_manager import SettingsManager
from .errors import PolyqdError
from .pipeline import COMMANDS, dispatch


def setup_logging(verbose=False, log_file=None):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else logging.INFO
    format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    # force: main() may run more than once per process
    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polyqd",
        description="Polycrystal specimen pipeline: tessellate, regularize, mesh",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Tessellate 50 grains in a unit cube
  python -m polyqd tess -n 50 --dims 1 1 1

  # Regularize the cached tessellation
  python -m polyqd reg --fmax 15 --mloop 3

  # Regularize and mesh, small-edge length tied to the mesh size
  python -m polyqd regmesh --cl 0.2 -o part.msh

Only one pipeline may use a cache directory at a time.
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--config', help='Pipeline settings JSON (merged over bundled defaults)')
    common.add_argument('--cache-dir', help='Cache directory (default: polyqd-cache)')
    common.add_argument('--log-file', help='Also write the log to this file')
    common.add_argument('--verbose', '-v', action='store_true', help='Verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Pipeline command')
    for name, entry in COMMANDS.items():
        subparser = subparsers.add_parser(name, help=entry.help, parents=[common])
        entry.add_arguments(subparser)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose, args.log_file)
    logger = logging.getLogger('polyqd.cli')

    try:
        settings = SettingsManager(args.config).override(cache_dir=args.cache_dir)
        dispatch(args, settings)
        logger.info(f"✅ {args.command} completed")
        return 0

    except (PolyqdError, OSError) as e:
        logger.error(f"❌ {args.command} failed: {e}")
        if args.verbose:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
