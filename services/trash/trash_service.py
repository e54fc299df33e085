"""Корзина: мягко удалённые клиенты, задачи и SIM-карты.

Данные для отображения не копируются при удалении, а собираются запросом
с JOIN'ами из исходных строк. Удалённую запись можно восстановить в течение
окна хранения (48 часов по умолчанию), после чего она удаляется
безвозвратно фоновой задачей :meth:`TrashService.purge_expired`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from peewee import JOIN, DatabaseError

from database.db import db
from database.models import Client, SimCard, SoftDeleteModel, Task
from utils.time_utils import utcnow

from .cache import TtlCache
from .dto import DeletedItem, EntityKind

logger = logging.getLogger(__name__)

_MODELS: dict[EntityKind, type[SoftDeleteModel]] = {
    EntityKind.CLIENT: Client,
    EntityKind.TASK: Task,
    EntityKind.SIM_CARD: SimCard,
}

# Порядок очистки: сначала зависимые строки, клиенты последними
_PURGE_ORDER = (EntityKind.TASK, EntityKind.SIM_CARD, EntityKind.CLIENT)


class PurgeError(RuntimeError):
    """Не удалось окончательно удалить одну строку корзины."""

    def __init__(self, kind: EntityKind, item_id: int, cause: Exception):
        super().__init__(f"Не удалось удалить {kind.value} id={item_id}: {cause}")
        self.kind = kind
        self.item_id = item_id


class TrashService:
    def __init__(
        self,
        cache: TtlCache,
        *,
        retention: timedelta = timedelta(hours=48),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._cache = cache
        self._retention = retention
        self._clock = clock

    @property
    def retention(self) -> timedelta:
        return self._retention

    # ─────────────────────────── чтение ───────────────────────────

    def list_deleted(self, requester_id: int, is_privileged: bool) -> list[DeletedItem]:
        """Вернуть содержимое корзины, видимое пользователю.

        Результат кэшируется по паре ``(requester_id, is_privileged)``.
        """
        key = (requester_id, bool(is_privileged))
        cached = self._cache.get(key)
        if cached is not None:
            return list(cached)

        now = self._clock()
        with db.atomic():
            items = [
                *self._deleted_clients(requester_id, is_privileged, now),
                *self._deleted_tasks(requester_id, is_privileged, now),
                *self._deleted_sim_cards(requester_id, is_privileged, now),
            ]
        items.sort(key=lambda item: (item.deleted_at, item.kind.value, item.id), reverse=True)

        self._cache.set(key, tuple(items))
        logger.info("🗑 Корзина пользователя id=%s: %s элементов", requester_id, len(items))
        return items

    def _item(self, kind: EntityKind, item_id: int, title: str, deleted_at: datetime, now: datetime, **extra) -> DeletedItem:
        deadline = deleted_at + self._retention
        return DeletedItem(
            kind=kind,
            id=item_id,
            title=title,
            deleted_at=deleted_at,
            restore_deadline=deadline,
            time_remaining=max(deadline - now, timedelta(0)),
            **extra,
        )

    def _deleted_clients(self, requester_id: int, is_privileged: bool, now: datetime):
        query = Client.select().where(Client.deleted_at.is_null(False))
        if not is_privileged:
            query = query.where(Client.user_id == requester_id)
        for client in query:
            yield self._item(
                EntityKind.CLIENT,
                client.id,
                client.name,
                client.deleted_at,
                now,
                client_name=client.name,
                details={
                    "email": client.email,
                    "phone": client.phone,
                    "vendor_code": client.vendor_code,
                    "sim_number": client.sim_number,
                },
            )

    def _deleted_tasks(self, requester_id: int, is_privileged: bool, now: datetime):
        query = (
            Task.select(
                Task.id,
                Task.title,
                Task.description,
                Task.priority,
                Task.due_date,
                Task.deleted_at,
                Client.name.alias("client_name"),
            )
            .join(
                Client,
                JOIN.LEFT_OUTER,
                on=(Task.client == Client.id) & Client.deleted_at.is_null(True),
            )
            .where(Task.deleted_at.is_null(False))
        )
        if not is_privileged:
            query = query.where(Task.user_id == requester_id)
        for row in query.dicts():
            yield self._item(
                EntityKind.TASK,
                row["id"],
                row["title"],
                row["deleted_at"],
                now,
                client_name=row["client_name"],
                details={
                    "description": row["description"],
                    "priority": row["priority"],
                    "due_date": row["due_date"],
                },
            )

    def _deleted_sim_cards(self, requester_id: int, is_privileged: bool, now: datetime):
        query = (
            SimCard.select(
                SimCard.id,
                SimCard.number,
                SimCard.state,
                SimCard.deleted_at,
                Client.name.alias("owner_name"),
                Client.deleted_at.alias("owner_deleted_at"),
            )
            .join(Client, JOIN.LEFT_OUTER, on=(SimCard.owner_client_id == Client.id))
            .where(SimCard.deleted_at.is_null(False))
        )
        if not is_privileged:
            # складские карты без владельца видны всем
            query = query.where(Client.id.is_null(True) | (Client.user_id == requester_id))
        for row in query.dicts():
            # имя показываем только для активного владельца
            owner_name = row["owner_name"] if row["owner_deleted_at"] is None else None
            yield self._item(
                EntityKind.SIM_CARD,
                row["id"],
                row["number"],
                row["deleted_at"],
                now,
                client_name=owner_name,
                details={"number": row["number"], "state": row["state"]},
            )

    # ─────────────────────────── запись ───────────────────────────

    def restore(self, kind: EntityKind | str, item_id: int) -> bool:
        """Восстановить запись из корзины до истечения срока.

        Сверку SIM-карт не запускает: восстановленная запись может временно
        нарушать согласованность до ближайшей плановой сверки.
        """
        kind = EntityKind(kind)
        model = _MODELS[kind]
        try:
            with db.atomic():
                row = (
                    model.select(model.id, model.deleted_at)
                    .where((model.id == item_id) & model.deleted_at.is_null(False))
                    .get_or_none()
                )
                if row is None:
                    logger.warning("❗ %s id=%s отсутствует в корзине", kind.value, item_id)
                    return False
                if row.deleted_at + self._retention <= self._clock():
                    logger.warning("⌛ Срок восстановления %s id=%s истёк", kind.value, item_id)
                    return False
                model.update(deleted_at=None).where(model.id == item_id).execute()
        except DatabaseError:
            logger.exception("❌ Ошибка восстановления %s id=%s", kind.value, item_id)
            return False

        self._cache.invalidate()
        logger.info("♻️ %s id=%s восстановлен", kind.value, item_id)
        return True

    def purge_expired(self) -> int:
        """Безвозвратно удалить записи, чей срок восстановления истёк."""
        cutoff = self._clock() - self._retention
        purged = 0
        for kind in _PURGE_ORDER:
            model = _MODELS[kind]
            expired_ids = [
                row.id
                for row in model.select(model.id).where(
                    model.deleted_at.is_null(False) & (model.deleted_at <= cutoff)
                )
            ]
            for item_id in expired_ids:
                try:
                    self._purge_row(kind, item_id)
                except PurgeError as exc:
                    logger.error("❌ %s", exc)
                    continue
                purged += 1

        if purged:
            self._cache.invalidate()
            logger.info("🔥 Окончательно удалено из корзины: %s", purged)
        return purged

    def _purge_row(self, kind: EntityKind, item_id: int) -> None:
        try:
            with db.atomic():
                if kind is EntityKind.CLIENT:
                    Task.update(client=None).where(Task.client == item_id).execute()
                self._delete_row(_MODELS[kind], item_id)
        except DatabaseError as exc:
            raise PurgeError(kind, item_id, exc) from exc

    @staticmethod
    def _delete_row(model: type[SoftDeleteModel], item_id: int) -> None:
        model.delete().where(model.id == item_id).execute()
