"""
Unit tests for CommandSpec argument translation.
"""
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from polyqd.errors import InvalidInputError, ProcessFailedError, ProcessSpawnError
from polyqd.tessellation import FLAG_ORDER, CommandSpec, morphooptiini_from


class TestCommandSpec:
    """Test suite for CommandSpec"""

    def test_minimal_arguments(self):
        spec = CommandSpec(n="50", morpho="graingrowth")
        assert spec.build_args() == ["-n", "50", "-morpho", "graingrowth"]

    def test_full_argument_order(self):
        """Test every flag appears once, in declared order, followed by its value"""
        spec = CommandSpec(
            n="50", morpho="gg", domain="cube(1,1,1)", morphooptiini="coo:file(a)",
            reg="1", fmax="20", sel="0.05", mloop="5", output="out", format="geo",
        )
        args = spec.build_args()

        assert args[0::2] == [flag for _, flag in FLAG_ORDER]
        assert args[1::2] == ["50", "cube(1,1,1)", "gg", "coo:file(a)", "1", "20",
                              "0.05", "5", "out", "geo"]

    def test_unset_sel_emits_no_flag(self):
        spec = CommandSpec(n="50", morpho="gg").with_options(fmax="20", mloop="5")
        assert "-sel" not in spec.build_args()

    def test_sel_pair_is_contiguous(self):
        args = CommandSpec(n="50", morpho="gg").with_options(sel="0.05").build_args()
        index = args.index("-sel")
        assert args[index:index + 2] == ["-sel", "0.05"]

    @pytest.mark.parametrize("value", ["0", "1"])
    def test_valid_regularization_flag(self, value):
        assert CommandSpec(n="5", morpho="gg", reg=value).reg == value

    @pytest.mark.parametrize("value", ["2", "true", "", " 1"])
    def test_invalid_regularization_flag(self, value):
        """Test validation happens at construction, before any process"""
        with patch("polyqd.utils.subprocess.run") as mock_run:
            with pytest.raises(InvalidInputError):
                CommandSpec(n="5", morpho="gg", reg=value)
            with pytest.raises(InvalidInputError):
                CommandSpec(n="5", morpho="gg").with_options(reg=value)
            mock_run.assert_not_called()

    def test_with_options_is_non_destructive(self):
        base = CommandSpec(n="5", morpho="gg")
        derived = base.with_options(fmax="15", sel=None)

        assert base.fmax is None
        assert derived.fmax == "15"
        assert derived.sel is None

    def test_frozen(self):
        spec = CommandSpec(n="5", morpho="gg")
        with pytest.raises(AttributeError):
            spec.fmax = "10"

    def test_paths_are_stringified(self):
        spec = CommandSpec(n="5", morpho="gg", output=Path("cache") / "polyqd-tess")
        assert spec.build_args()[-1] == str(Path("cache") / "polyqd-tess")

    def test_command_prefix(self):
        command = CommandSpec(n="5", morpho="gg").command("neper")
        assert command[:4] == ["neper", "--rcfile", "none", "-T"]
        assert command[4:] == ["-n", "5", "-morpho", "gg"]

    def test_morphooptiini(self):
        assert morphooptiini_from("cache/polyqd-tess.tess") == \
            "coo:file(cache/polyqd-tess.tess),weight:file(cache/polyqd-tess.tess)"


class TestCommandRun:
    """Test suite for launching the generator"""

    def test_run_launches_generator(self):
        spec = CommandSpec(n="5", morpho="gg", domain="cube(1,1,1)")
        with patch("polyqd.utils.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 0)
            spec.run("neper")

        mock_run.assert_called_once()
        assert mock_run.call_args.args[0] == spec.command("neper")

    def test_nonzero_exit_fails(self):
        spec = CommandSpec(n="5", morpho="gg")
        with patch("polyqd.utils.subprocess.run") as mock_run:
            mock_run.return_value = subprocess.CompletedProcess([], 3)
            with pytest.raises(ProcessFailedError) as excinfo:
                spec.run("neper")

        assert excinfo.value.process == "neper"
        assert excinfo.value.returncode == 3

    def test_missing_executable(self):
        spec = CommandSpec(n="5", morpho="gg")
        with patch("polyqd.utils.subprocess.run", side_effect=FileNotFoundError("neper")):
            with pytest.raises(ProcessSpawnError):
                spec.run("neper")
