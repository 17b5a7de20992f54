"""
Utility functions for the specimen pipeline
"""

import subprocess
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np

from .errors import InsufficientResourcesError, ProcessFailedError, ProcessSpawnError

logger = logging.getLogger(__name__)


def check_system_resources(min_free_memory_gb: float = 0.0) -> float:
    """
    Log available memory/CPU and enforce an optional free-memory floor

    Args:
        min_free_memory_gb: Required free memory in GB (0 disables the check)

    Returns:
        Available memory in GB
    """
    import psutil

    available_memory_gb = psutil.virtual_memory().available / (1024**3)
    logger.debug(f"System: {available_memory_gb:.1f}GB free RAM, {psutil.cpu_count()} CPUs")

    if min_free_memory_gb and available_memory_gb < min_free_memory_gb:
        raise InsufficientResourcesError(
            f"Insufficient memory: need {min_free_memory_gb}GB, have {available_memory_gb:.1f}GB"
        )
    return available_memory_gb


def run_command(cmd: Sequence[Union[str, Path]], cwd: Optional[Path] = None,
                min_free_memory_gb: float = 0.0) -> subprocess.CompletedProcess:
    """
    Run an external tool synchronously, inheriting stdout/stderr

    Args:
        cmd: Argument vector, executable first
        cwd: Working directory
        min_free_memory_gb: Free memory required before launching

    Raises:
        ProcessSpawnError: executable missing or not runnable
        ProcessFailedError: non-zero exit status
    """
    args: List[str] = [str(c) for c in cmd]
    process = args[0]

    check_system_resources(min_free_memory_gb)
    logger.info(f"Running: {' '.join(args)}")

    try:
        # stdout/stderr left as None so the child writes to our streams
        result = subprocess.run(args, cwd=cwd)
    except OSError as e:
        raise ProcessSpawnError(process, str(e)) from e

    if result.returncode != 0:
        raise ProcessFailedError(process, result.returncode)

    return result


def format_decimal(value: float) -> str:
    """
    Shortest round-tripping decimal without exponent or trailing zeros

    1.0 -> "1", 0.25 -> "0.25", 1e-7 -> "0.0000001"
    """
    return np.format_float_positional(float(value), trim='-')
