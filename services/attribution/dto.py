from __future__ import annotations

from dataclasses import dataclass

from .errors import AttributionError


@dataclass(frozen=True)
class ValidationOutcome:
    """Решение валидатора по паре (клиент, SIM-карта).

    ``orphaned`` означает, что карта формально занята, но её владелец
    удалён или отсутствует: исполнитель должен освободить её и
    перепроверить запрос.
    """

    error: AttributionError | None = None
    orphaned: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> str | None:
        return str(self.error) if self.error else None

    @classmethod
    def rejected(cls, error: AttributionError) -> "ValidationOutcome":
        return cls(error=error)


@dataclass(frozen=True)
class AttributionResult:
    success: bool
    message: str
    error: AttributionError | None = None

    @classmethod
    def ok(cls, message: str) -> "AttributionResult":
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, error: AttributionError) -> "AttributionResult":
        return cls(success=False, message=str(error), error=error)
