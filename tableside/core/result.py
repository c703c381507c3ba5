from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from tableside.core.errors import ErrorKind, TablesideError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_exception(cls, exc: TablesideError) -> "Err":
        return cls(kind=exc.kind, message=exc.message)

    def to_payload(self) -> dict[str, Any]:
        return {"error": {"kind": self.kind.value, "message": self.message}}


Result = Union[Ok[T], Err]


def capture(fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result:
    """Run a core operation and return Ok(value) or Err(kind, message).

    Only domain errors are converted; anything else propagates.
    """
    try:
        return Ok(fn(*args, **kwargs))
    except TablesideError as exc:
        return Err.from_exception(exc)
