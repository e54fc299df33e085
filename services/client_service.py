"""Сервисный модуль для управления клиентами.

Поле ``sim_number`` здесь намеренно не записывается: атрибуция карт идёт
только через :class:`services.attribution.AttributionExecutor`.
"""

import logging
from peewee import ModelSelect

from database.db import db
from database.models import Client
from services.validators import normalize_full_name, normalize_vendor_code

logger = logging.getLogger(__name__)

CLIENT_ALLOWED_FIELDS = {"name", "phone", "email", "vendor_code", "signed_at", "user_id", "note"}


# ──────────────────────────── Получение ─────────────────────────────


def get_all_clients() -> ModelSelect:
    """Вернуть выборку всех активных клиентов."""
    return Client.active()


def get_client_by_id(client_id: int) -> Client | None:
    """Получить активного клиента по его идентификатору."""
    return Client.active().where(Client.id == client_id).get_or_none()


# ──────────────────────────── Изменение ─────────────────────────────


def add_client(**kwargs) -> Client:
    """Создать клиента."""
    clean_data = {
        key: kwargs[key]
        for key in CLIENT_ALLOWED_FIELDS
        if key in kwargs and kwargs[key] not in ("", None)
    }

    name = normalize_full_name(clean_data.get("name", ""))
    if not name:
        logger.warning("❌ Попытка создать клиента без имени")
        raise ValueError("Поле 'name' обязательно для клиента")
    clean_data["name"] = name
    if "vendor_code" in clean_data:
        clean_data["vendor_code"] = normalize_vendor_code(clean_data["vendor_code"])

    with db.atomic():
        client = Client.create(**clean_data)
    logger.info("✅ Клиент id=%s: %s создан", client.id, client.name)
    return client


def update_vendor_code(client_id: int, vendor_code: str | None) -> Client:
    """Сменить продавца клиента.

    Код на закреплённой SIM-карте догонит клиента при ближайшей сверке.
    """
    client = get_client_by_id(client_id)
    if client is None:
        raise Client.DoesNotExist(f"Клиент id={client_id} не найден")
    client.vendor_code = normalize_vendor_code(vendor_code)
    client.save(only=[Client.vendor_code])
    logger.info("✏️ Клиент id=%s: код продавца %s", client.id, client.vendor_code)
    return client


def mark_client_deleted(client_id: int) -> bool:
    """Помечает клиента как удалённого.

    Ссылка на SIM-карту сохраняется, чтобы восстановление из корзины
    вернуло клиента без изменений; карту освободит сверка.
    """
    client = get_client_by_id(client_id)
    if client is None:
        logger.warning("❗ Клиент с id=%s не найден для удаления", client_id)
        return False
    with db.atomic():
        client.soft_delete()
    logger.info("🗑️ Клиент id=%s: %s помечен удалённым", client.id, client.name)
    return True
