"""Discriminated result types returned across component boundaries."""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


@dataclass
class GatewayResult:
    """Outcome of one Admin API call.

    Exactly one of ``data`` or ``errors`` is meaningful: a successful
    call carries ``data`` (possibly an empty dict for bodiless 2xx
    responses); a failed call carries a non-empty ``errors`` list of
    ``{"message": ...}`` dicts.
    """

    data: dict[str, Any] | None = None
    errors: list[dict[str, Any]] = field(default_factory=list)
    status_code: int | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def first_error(self) -> str | None:
        if not self.errors:
            return None
        return str(self.errors[0].get("message", "Unknown error"))

    @classmethod
    def success(cls, data: dict[str, Any] | None, status_code: int | None = None) -> "GatewayResult":
        return cls(data=data if data is not None else {}, status_code=status_code)

    @classmethod
    def failure(cls, message: str, status_code: int | None = None) -> "GatewayResult":
        return cls(errors=[{"message": message}], status_code=status_code)


@dataclass
class Result(Generic[T]):
    """Generic success/error result for service-level operations."""

    value: T | None = None
    error: str | None = None
    non_recoverable: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, non_recoverable: bool = False) -> "Result[T]":
        return cls(error=error, non_recoverable=non_recoverable)
