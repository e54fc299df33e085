from datetime import datetime
from enum import Enum
from peewee import (
    Model,
    CharField,
    DateField,
    DateTimeField,
    ForeignKeyField,
    IntegerField,
    TextField,
)

from database.db import db
from utils.time_utils import utcnow


class BaseModel(Model):
    class Meta:
        database = db


class SoftDeleteModel(BaseModel):
    """Base with soft-delete support via ``deleted_at`` timestamp."""

    deleted_at = DateTimeField(null=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self, when: datetime | None = None) -> None:
        """Mark instance as deleted without physical removal."""
        self.deleted_at = when or utcnow()
        # остальные поля могли измениться в БД после загрузки экземпляра
        self.save(only=[type(self).deleted_at])

    @classmethod
    def active(cls):
        return cls.select().where(cls.deleted_at.is_null(True))


class Client(SoftDeleteModel):
    name = CharField(index=True)
    phone = CharField(null=True)
    email = CharField(null=True)
    vendor_code = CharField(null=True, index=True)
    # Денормализованная копия номера SIM-карты, не внешний ключ
    sim_number = CharField(null=True, index=True)
    signed_at = DateField(null=True)
    user_id = IntegerField(null=True, index=True)
    note = TextField(null=True)
    created_at = DateTimeField(default=utcnow)

    def __str__(self) -> str:
        return self.name


class SimCardState(str, Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"


class SimCard(SoftDeleteModel):
    number = CharField(unique=True)
    # Обратная ссылка на клиента; связь поддерживается приложением
    owner_client_id = IntegerField(null=True, index=True)
    state = CharField(default=SimCardState.AVAILABLE.value, index=True)
    vendor_code = CharField(null=True)
    assigned_at = DateTimeField(null=True)
    activated_at = DateTimeField(null=True)
    note = TextField(null=True)
    created_at = DateTimeField(default=utcnow)

    class Meta:
        table_name = "sim_card"

    @property
    def is_assigned(self) -> bool:
        return self.state == SimCardState.ASSIGNED.value

    def __str__(self) -> str:
        return self.number


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Task(SoftDeleteModel):
    title = CharField()
    description = TextField(null=True)
    priority = CharField(default=TaskPriority.MEDIUM.value)
    status = CharField(default="pending")
    due_date = DateField(null=True)
    client = ForeignKeyField(Client, null=True, backref="tasks", on_delete="SET NULL")
    user_id = IntegerField(null=True, index=True)
    created_at = DateTimeField(default=utcnow)

    def __str__(self) -> str:
        return self.title
