"""
Pytest configuration and shared fixtures for polyqd pipeline tests.
"""
import json
import logging
import subprocess
import tempfile
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from polyqd.config_manager import CacheLayout, SpecDims, Specification
from polyqd.geometry import GmshGeoBackend


CUBE_GEO = """// Regularized tessellation
Point(1) = {0, 0, 0};
Point(2) = {1, 0, 0};
Point(3) = {1, 1, 0};
Point(4) = {0, 1, 0};
Point(5) = {0, 0, 1};
Point(6) = {1, 0, 1};
Point(7) = {1, 1, 1};
Point(8) = {0, 1, 1};
Line(1) = {1, 2};
Line(2) = {2, 3};
Line(3) = {3, 4};
Line(4) = {4, 1};
Line(5) = {5, 6};
Line(6) = {6, 7};
Line(7) = {7, 8};
Line(8) = {8, 5};
Line(9) = {1, 5};
Line(10) = {2, 6};
Line(11) = {3, 7};
Line(12) = {4, 8};
Line Loop(1) = {1, 2, 3, 4};
Plane Surface(1) = {1};
Line Loop(2) = {5, 6, 7, 8};
Plane Surface(2) = {2};
Line Loop(3) = {1, 10, -5, -9};
Plane Surface(3) = {3};
Line Loop(4) = {2, 11, -6, -10};
Plane Surface(4) = {4};
Line Loop(5) = {3, 12, -7, -11};
Plane Surface(5) = {5};
Line Loop(6) = {4, 9, -8, -12};
Plane Surface(6) = {6};
Physical Surface(1) = {1, 2};
Physical Surface(2) = {3, 4, 5, 6};
Surface Loop(1) = {1, 2, 3, 4, 5, 6};
Volume(1) = {1};
Physical Volume(1) = {1};
"""

TWISTED_QUAD_GEO = """Point(1) = {0, 0, 0};
Point(2) = {1, 0, 0};
Point(3) = {1, 1, 0.2};
Point(4) = {0, 1, 0};
Line(1) = {1, 2};
Line(2) = {2, 3};
Line(3) = {3, 4};
Line(4) = {4, 1};
Line Loop(7) = {1, 2, 3, 4};
Plane Surface(7) = {7};
Physical Surface(3) = {7};
"""


def hex_grid_geo(cells=3, jitter=0.01, seed=7):
    """
    Block of cells^3 unit hexahedra sharing faces, interior vertices
    jittered off their planes (a planar solution exists)
    """
    rng = np.random.RandomState(seed)
    n = cells + 1

    def point(i, j, k):
        return 1 + i + n * (j + n * k)

    text = []
    for k in range(n):
        for j in range(n):
            for i in range(n):
                xyz = np.array([i, j, k], dtype=float) / cells
                if all(0 < c < cells for c in (i, j, k)):
                    xyz += rng.uniform(-jitter, jitter, 3)
                text.append("Point({}) = {{{:.17g}, {:.17g}, {:.17g}}};".format(point(i, j, k), *xyz))

    edges = {}

    def edge(a, b):
        key = (min(a, b), max(a, b))
        if key not in edges:
            edges[key] = len(edges) + 1
            text.append(f"Line({edges[key]}) = {{{key[0]}, {key[1]}}};")
        return edges[key] if a == key[0] else -edges[key]

    surfaces = []
    for axis in range(3):
        for level in range(n):
            for u in range(cells):
                for v in range(cells):
                    corners = []
                    for du, dv in ((0, 0), (1, 0), (1, 1), (0, 1)):
                        ijk = [0, 0, 0]
                        ijk[axis] = level
                        ijk[(axis + 1) % 3] = u + du
                        ijk[(axis + 2) % 3] = v + dv
                        corners.append(point(*ijk))
                    loop = [edge(corners[m], corners[(m + 1) % 4]) for m in range(4)]
                    tag = len(surfaces) + 1
                    surfaces.append(tag)
                    text.append(f"Curve Loop({tag}) = {{{', '.join(map(str, loop))}}};")
                    text.append(f"Plane Surface({tag}) = {{{tag}}};")

    text.append(f"Physical Surface(1) = {{{', '.join(map(str, surfaces))}}};")
    text.append(f"Physical Surface(2) = {{{', '.join(map(str, surfaces[:cells * cells]))}}};")
    return "\n".join(text) + "\n"

@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def layout(temp_dir):
    """Cache layout rooted in the temporary directory"""
    return CacheLayout(temp_dir / "polyqd-cache")


@pytest.fixture
def sample_spec():
    """Specification as written by `tess -n 50 --dims 1 1 1`"""
    return Specification(dims=SpecDims(1.0, 1.0, 1.0), n="50", morpho="graingrowth")


@pytest.fixture
def cube_geo_file(temp_dir):
    path = temp_dir / "cube.geo"
    path.write_text(CUBE_GEO)
    return path


@pytest.fixture
def twisted_geo_file(temp_dir):
    path = temp_dir / "twisted.geo"
    path.write_text(TWISTED_QUAD_GEO)
    return path


@pytest.fixture
def hex_grid_geo_file(temp_dir):
    """108 non-planar surfaces sharing vertices"""
    path = temp_dir / "grid.geo"
    path.write_text(hex_grid_geo())
    return path


@pytest.fixture
def geo_backend():
    """gmsh backend, finalized after the test"""
    backend = GmshGeoBackend()
    yield backend
    backend.close()


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Undo the root handlers installed by the CLI's setup_logging"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def tessellated_cache(layout, sample_spec):
    """Cache state left behind by a successful tess run"""
    layout.ensure()
    layout.config.write_text(json.dumps(sample_spec.to_dict()))
    layout.tess.write_text("***tess\n")
    return layout


@pytest.fixture
def sample_settings_file(temp_dir):
    settings = {
        "neper_executable": "/opt/neper/bin/neper",
        "flatness_tolerance_deg": 0.01,
        "correction_sweeps": 3,
    }
    path = temp_dir / "settings.json"
    path.write_text(json.dumps(settings, indent=2))
    return path


def _fake_tool_run(args, cwd=None, **kwargs):
    """Stand-in for the external tools: writes the artifact the generator would"""
    args = list(args)
    if "-o" in args:
        stem = Path(args[args.index("-o") + 1])
        fmt = args[args.index("-format") + 1] if "-format" in args else "tess"
        stem.parent.mkdir(parents=True, exist_ok=True)
        target = stem.with_name(f"{stem.name}.{fmt}")
        target.write_text(CUBE_GEO if fmt == "geo" else "***tess\n")
    return subprocess.CompletedProcess(args, 0)


@pytest.fixture
def fake_tools():
    """Patch subprocess.run so no external process is ever launched"""
    with patch("polyqd.utils.subprocess.run", side_effect=_fake_tool_run) as mock_run:
        yield mock_run


@pytest.fixture
def launched(fake_tools):
    """Callable returning the argument vectors passed to the patched subprocess.run"""
    return lambda: [list(call.args[0]) for call in fake_tools.call_args_list]
