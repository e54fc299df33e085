"""Единое место для Peewee-Proxy ``db`` и транзакций с блокировкой на запись."""

from __future__ import annotations

from peewee import ModelSelect, Proxy, SqliteDatabase

db = Proxy()


def write_transaction():
    """Транзакция, сериализующая конкурентные записи.

    SQLite не поддерживает ``SELECT ... FOR UPDATE``, поэтому берём
    RESERVED-блокировку сразу (``BEGIN IMMEDIATE``). Для PostgreSQL
    используется обычная транзакция, а строки блокируются через
    :func:`lock_rows`. Внутри уже открытой транзакции создаётся savepoint.
    """
    database = db.obj
    if database is None:
        raise RuntimeError("База данных не инициализирована")
    if isinstance(database, SqliteDatabase):
        return database.atomic("IMMEDIATE")
    return database.atomic()


def lock_rows(query: ModelSelect) -> ModelSelect:
    """Добавить ``FOR UPDATE``, если движок это умеет."""
    if getattr(db.obj, "for_update", False):
        return query.for_update()
    return query
