"""
Exception types raised by the polyqd pipeline.

Every error propagates to the CLI boundary, which reports it and exits
with a non-zero status. Nothing is retried.
"""
from pathlib import Path
from typing import Optional, Union


class PolyqdError(RuntimeError):
    """Base class for pipeline errors"""


class InvalidInputError(PolyqdError, ValueError):
    """A flag or settings value is out of its accepted domain"""


class MissingPrerequisiteError(PolyqdError):
    """A cache artifact expected from an earlier stage does not exist"""

    def __init__(self, artifact: Union[str, Path], stage: str):
        self.artifact = Path(artifact)
        self.stage = stage
        super().__init__(f"Missing {self.artifact} - run '{stage}' first")


class MalformedConfigError(PolyqdError):
    """The persisted specification cannot be decoded"""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        super().__init__(f"Malformed specification in {self.path}: {reason}")


class ProcessSpawnError(PolyqdError):
    """An external executable could not be started"""

    def __init__(self, process: str, reason: str):
        self.process = process
        super().__init__(f"Could not start '{process}': {reason}")


class ProcessFailedError(PolyqdError):
    """An external process exited with a non-zero status"""

    def __init__(self, process: str, returncode: int):
        self.process = process
        self.returncode = returncode
        super().__init__(f"'{process}' exited with status {returncode}")


class FlatnessCorrectionFailed(PolyqdError):
    """No acceptable planar approximation exists for a surface"""

    def __init__(self, tag: int, reason: Optional[str] = None):
        self.tag = tag
        message = f"Flatness correction failed for surface {tag}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class GeometryError(PolyqdError):
    """The geometry backend could not read, update or write a model"""


class InsufficientResourcesError(PolyqdError):
    """Not enough free memory to launch an external tool"""
