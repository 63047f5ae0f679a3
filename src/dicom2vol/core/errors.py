"""Error kinds raised while assembling a volume.

Every error carries the pipeline stage that produced it and, where one
exists, the file and frame that caused it, so a host can point at the
offending slice.
"""

from __future__ import annotations

from enum import Enum


class Stage(Enum):
    PARSE = "parse"
    SORT = "sort"
    VALIDATE = "validate"
    DECODE = "decode"
    NORMALIZE = "normalize"
    CONFIGURE = "configure"

    def __str__(self) -> str:
        return self.value


class ReaderError(Exception):
    """Base class for all errors reported by the volume reader."""

    default_stage: Stage = Stage.PARSE

    def __init__(
        self,
        message: str,
        *,
        stage: Stage | None = None,
        file_index: int | None = None,
        frame_index: int | None = None,
        path: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage if stage is not None else self.default_stage
        self.file_index = file_index
        self.frame_index = frame_index
        self.path = path

    def __str__(self) -> str:
        context = []
        if self.file_index is not None:
            context.append(f"file {self.file_index}")
        if self.frame_index is not None:
            context.append(f"frame {self.frame_index}")
        if self.path:
            context.append(self.path)
        suffix = f" ({', '.join(context)})" if context else ""
        return f"[{self.stage}] {self.message}{suffix}"


class ParseError(ReaderError):
    """A file could not be read as DICOM."""

    default_stage = Stage.PARSE


class StructureError(ReaderError, ValueError):
    """The sorted frames do not form a consistent volume."""

    default_stage = Stage.VALIDATE


class DecodeError(ReaderError):
    """The pixel payload of one file could not be decoded."""

    default_stage = Stage.DECODE


class ConfigurationError(ReaderError, ValueError):
    """The requested configuration cannot be satisfied by the inputs."""

    default_stage = Stage.CONFIGURE
