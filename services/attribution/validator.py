"""Проверка допустимости атрибуции SIM-карты клиенту.

Валидатор только читает данные. Решение принимается по текущему состоянию
обеих таблиц, поэтому исполнитель вызывает его внутри транзакции с
блокировкой на запись, чтобы два параллельных запроса не прошли проверку
одновременно.
"""

from __future__ import annotations

import logging

from database.db import lock_rows
from database.models import Client, SimCard, SimCardState
from services.validators import normalize_sim_number

from .dto import ValidationOutcome
from .errors import (
    ClientAlreadyHasSimCardError,
    ClientNotFoundError,
    SimCardAlreadyAssignedError,
    SimCardNotFoundError,
)

logger = logging.getLogger(__name__)


class AttributionValidator:
    """Чистая функция решения: можно ли закрепить карту за клиентом."""

    def validate(
        self, client_id: int, sim_number: str, *, lock: bool = False
    ) -> ValidationOutcome:
        # 1. Клиент существует и активен
        client = self._get_active_client(client_id, lock=lock)
        if client is None:
            return ValidationOutcome.rejected(ClientNotFoundError(client_id))

        # 2. Карта существует и не лежит в корзине
        number = normalize_sim_number(sim_number)
        card = self._get_card(number, lock=lock) if number else None
        if card is None:
            return ValidationOutcome.rejected(SimCardNotFoundError(sim_number))

        # 3. Карта свободна или уже принадлежит этому клиенту
        orphaned = False
        holder_id = card.owner_client_id
        if holder_id is None:
            orphaned = card.state != SimCardState.AVAILABLE.value
        elif holder_id != client.id:
            holder = self._get_active_client(holder_id)
            if holder is not None:
                return ValidationOutcome.rejected(
                    SimCardAlreadyAssignedError(number, holder.id, holder.name)
                )
            logger.warning(
                "⚠️ SIM-карта %s ссылается на удалённого клиента id=%s",
                number,
                holder_id,
            )
            orphaned = True

        claimant = (
            Client.active()
            .where((Client.sim_number == number) & (Client.id != client.id))
            .order_by(Client.id)
            .first()
        )
        if claimant is not None:
            return ValidationOutcome.rejected(
                SimCardAlreadyAssignedError(number, claimant.id, claimant.name)
            )

        # 4. У клиента нет другой карты
        current = normalize_sim_number(client.sim_number)
        if current and current != number:
            return ValidationOutcome.rejected(
                ClientAlreadyHasSimCardError(client.id, client.name, current)
            )

        return ValidationOutcome(orphaned=orphaned)

    @staticmethod
    def _get_active_client(client_id: int, *, lock: bool = False) -> Client | None:
        query = Client.active().where(Client.id == client_id)
        if lock:
            query = lock_rows(query)
        return query.get_or_none()

    @staticmethod
    def _get_card(number: str, *, lock: bool = False) -> SimCard | None:
        query = SimCard.active().where(SimCard.number == number)
        if lock:
            query = lock_rows(query)
        return query.get_or_none()
