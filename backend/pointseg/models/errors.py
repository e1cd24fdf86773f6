"""
Pipeline error kinds and the result type returned by the core components.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    EMPTY_PROMPT_SET = "empty_prompt_set"
    DETECTOR_UNAVAILABLE = "detector_unavailable"
    TENSOR_SHAPE_MISMATCH = "tensor_shape_mismatch"
    MODEL_EXECUTION_FAILURE = "model_execution_failure"


@dataclass(frozen=True)
class PipelineError:
    kind: ErrorKind
    message: str = ""

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}" if self.message else self.kind.value


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Either a value or a PipelineError, never both.

    Core operations return this instead of raising so that every failure
    reaches the caller as a specific error kind.
    """

    value: T | None = None
    error: PipelineError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str = "") -> "Result[T]":
        return cls(error=PipelineError(kind, message))
