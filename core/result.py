"""Tagged success/error results shared by every layer of the engine."""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from core.errors import TradeError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful result carrying a value."""
    value: T

    def is_ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Failed result carrying the error that caused it."""
    error: TradeError

    def is_ok(self) -> bool:
        return False

    def unwrap(self):
        raise self.error

    @property
    def reason(self) -> str:
        return str(self.error)


Result = Union[Ok[T], Err]
