from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class EntityKind(str, Enum):
    CLIENT = "client"
    TASK = "task"
    SIM_CARD = "sim_card"


@dataclass(frozen=True)
class DeletedItem:
    """Элемент корзины, обогащённый данными для отображения."""

    kind: EntityKind
    id: int
    title: str
    deleted_at: datetime
    restore_deadline: datetime
    time_remaining: timedelta
    client_name: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def hours_remaining(self) -> int:
        return int(self.time_remaining.total_seconds() // 3600)

    @property
    def is_expired(self) -> bool:
        return self.time_remaining <= timedelta(0)
