"""Склад SIM-карт: заведение, поиск и удаление в корзину."""

from __future__ import annotations

import logging

from peewee import ModelSelect

from database.db import db
from database.models import SimCard, SimCardState
from services.validators import normalize_sim_number, normalize_vendor_code

logger = logging.getLogger(__name__)


class DuplicateSimCardError(ValueError):
    """Raised when a card with the same number is already in stock."""

    def __init__(self, number: str, existing: SimCard):
        state = "в корзине" if existing.is_deleted else "на складе"
        super().__init__(f"SIM-карта {number} уже есть {state} (id={existing.id})")
        self.number = number
        self.existing = existing


def get_sim_card(number: str) -> SimCard | None:
    """Найти активную карту по номеру."""
    number = normalize_sim_number(number)
    if not number:
        return None
    return SimCard.active().where(SimCard.number == number).get_or_none()


def get_available_sim_cards(vendor_code: str | None = None) -> ModelSelect:
    """Свободные карты, упорядоченные по номеру.

    С ``vendor_code`` возвращаются только карты, выданные этому продавцу.
    """
    query = SimCard.active().where(
        (SimCard.state == SimCardState.AVAILABLE.value)
        & SimCard.owner_client_id.is_null(True)
    )
    vendor_code = normalize_vendor_code(vendor_code)
    if vendor_code:
        query = query.where(SimCard.vendor_code == vendor_code)
    return query.order_by(SimCard.number)


def add_sim_card(
    number: str, *, vendor_code: str | None = None, note: str | None = None
) -> SimCard:
    """Завести новую свободную карту."""
    normalized = normalize_sim_number(number)
    if not normalized:
        raise ValueError("Номер SIM-карты обязателен")

    existing = SimCard.get_or_none(SimCard.number == normalized)
    if existing is not None:
        raise DuplicateSimCardError(normalized, existing)

    with db.atomic():
        card = SimCard.create(
            number=normalized, vendor_code=normalize_vendor_code(vendor_code), note=note
        )
    logger.info("📶 SIM-карта %s заведена (id=%s)", card.number, card.id)
    return card


def mark_sim_card_deleted(number: str) -> bool:
    """Переместить карту в корзину. Атрибуция сохраняется до очистки."""
    card = get_sim_card(number)
    if card is None:
        logger.warning("❗ SIM-карта %s не найдена для удаления", number)
        return False
    with db.atomic():
        card.soft_delete()
    logger.info("🗑 SIM-карта %s помечена удалённой", card.number)
    return True
