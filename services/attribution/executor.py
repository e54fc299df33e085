"""Атомарная атрибуция и освобождение SIM-карт.

Это единственное место, где приложение пишет пару
``Client.sim_number`` / ``SimCard.owner_client_id``. Обе записи выполняются
в одной транзакции, так что после успешного вызова инвариант двусторонней
ссылки выполняется сразу, а не только после ближайшей сверки.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from peewee import DatabaseError

from database.db import lock_rows, write_transaction
from database.models import Client, SimCard, SimCardState
from services.validators import normalize_sim_number, normalize_vendor_code
from utils.time_utils import as_datetime, utcnow

from .dto import AttributionResult
from .errors import AttributionError, AttributionTransactionError, ClientNotFoundError
from .validator import AttributionValidator

logger = logging.getLogger(__name__)


def released_card_fields() -> dict:
    """Поля свободной карты: без владельца, кода продавца и дат атрибуции."""
    return {
        "owner_client_id": None,
        "state": SimCardState.AVAILABLE.value,
        "vendor_code": None,
        "assigned_at": None,
        "activated_at": None,
    }


class _Rejected(Exception):
    """Отказ валидатора внутри транзакции: откатывает подготовительные записи."""

    def __init__(self, error: AttributionError):
        super().__init__(str(error))
        self.error = error


class AttributionExecutor:
    def __init__(
        self,
        validator: AttributionValidator | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._validator = validator or AttributionValidator()
        self._clock = clock

    # ─────────────────────────── атрибуция ───────────────────────────

    def attribute(
        self, client_id: int, sim_number: str, vendor_code: str | None = None
    ) -> AttributionResult:
        """Закрепить SIM-карту за клиентом.

        Ошибки бизнес-правил возвращаются в :class:`AttributionResult`.
        Сбой хранилища поднимается как :class:`AttributionTransactionError`.
        """
        try:
            client, number = self._assign(client_id, sim_number, vendor_code)
        except _Rejected as rejected:
            return AttributionResult.failed(rejected.error)

        logger.info("✅ SIM-карта %s закреплена за клиентом id=%s: %s", number, client.id, client.name)
        return AttributionResult.ok(
            f"SIM-карта {number} закреплена за клиентом '{client.name}'"
        )

    def change(
        self, client_id: int, sim_number: str, vendor_code: str | None = None
    ) -> AttributionResult:
        """Заменить карту клиента на другую в одной транзакции.

        Старая карта освобождается, только если новая прошла проверку;
        при отказе обе карты остаются как были.
        """
        replaced: list[str] = []

        def release_current(number: str) -> None:
            client = lock_rows(Client.active().where(Client.id == client_id)).get_or_none()
            current = normalize_sim_number(client.sim_number) if client else ""
            if current and current != number:
                self._write_client_ref(client.id, None)
                self._release_card(current, client.id)
                replaced.append(current)

        try:
            client, number = self._assign(
                client_id, sim_number, vendor_code, prepare=release_current
            )
        except _Rejected as rejected:
            return AttributionResult.failed(rejected.error)

        if not replaced:
            logger.info("✅ SIM-карта %s закреплена за клиентом id=%s: %s", number, client.id, client.name)
            return AttributionResult.ok(
                f"SIM-карта {number} закреплена за клиентом '{client.name}'"
            )
        logger.info("🔁 Клиент id=%s: SIM-карта %s заменена на %s", client.id, replaced[0], number)
        return AttributionResult.ok(
            f"SIM-карта клиента '{client.name}' заменена: {replaced[0]} → {number}"
        )

    def reassign(
        self, sim_number: str, client_id: int, vendor_code: str | None = None
    ) -> AttributionResult:
        """Передать карту другому клиенту, сняв её с текущего держателя.

        Снятие и новая атрибуция выполняются в одной транзакции; если новый
        клиент не проходит проверку, карта остаётся у прежнего держателя.
        """
        holders: list[int] = []

        def detach_holder(number: str) -> None:
            card = lock_rows(SimCard.active().where(SimCard.number == number)).get_or_none()
            if card is None or card.owner_client_id == client_id:
                return
            Client.update(sim_number=None).where(
                (Client.sim_number == number) & (Client.id != client_id)
            ).execute()
            if card.owner_client_id is not None:
                holders.append(card.owner_client_id)
            self._release_card(number, card.owner_client_id)

        try:
            client, number = self._assign(
                client_id, sim_number, vendor_code, prepare=detach_holder
            )
        except _Rejected as rejected:
            return AttributionResult.failed(rejected.error)

        if holders:
            logger.info("🔁 SIM-карта %s передана: клиент id=%s → id=%s", number, holders[0], client.id)
        else:
            logger.info("✅ SIM-карта %s закреплена за клиентом id=%s: %s", number, client.id, client.name)
        return AttributionResult.ok(
            f"SIM-карта {number} закреплена за клиентом '{client.name}'"
        )

    def _assign(
        self,
        client_id: int,
        sim_number: str,
        vendor_code: str | None,
        *,
        prepare: Callable[[str], None] | None = None,
    ) -> tuple[Client, str]:
        """Проверить и записать атрибуцию под одной блокировкой.

        ``prepare`` выполняется в той же транзакции до проверки. При отказе
        поднимается ``_Rejected``, и все изменения откатываются.
        """
        number = normalize_sim_number(sim_number)
        try:
            with write_transaction():
                if prepare is not None:
                    prepare(number)
                outcome = self._validator.validate(client_id, sim_number, lock=True)
                if outcome.ok and outcome.orphaned:
                    self._clear_orphan(number)
                    outcome = self._validator.validate(client_id, sim_number, lock=True)
                if not outcome.ok:
                    raise _Rejected(outcome.error)

                client = Client.get_by_id(client_id)
                card = SimCard.get(SimCard.number == number)
                now = self._clock()
                assigned_at = as_datetime(client.signed_at) or now
                activated_at = now
                if card.owner_client_id == client.id:
                    # повторная атрибуция той же карты не сдвигает даты
                    assigned_at = card.assigned_at or assigned_at
                    activated_at = card.activated_at or activated_at
                self._write_client_ref(client.id, number)
                self._write_card_assignment(
                    card,
                    client_id=client.id,
                    vendor_code=(
                        normalize_vendor_code(vendor_code)
                        or client.vendor_code
                        or card.vendor_code
                    ),
                    assigned_at=assigned_at,
                    activated_at=activated_at,
                )
        except _Rejected as rejected:
            logger.info(
                "⛔ Атрибуция %s → клиент id=%s отклонена: %s",
                sim_number,
                client_id,
                rejected.error,
            )
            raise
        except DatabaseError as exc:
            logger.error(
                "❌ Ошибка транзакции при атрибуции %s → клиент id=%s: %s",
                sim_number,
                client_id,
                exc,
            )
            raise AttributionTransactionError(
                f"Не удалось закрепить SIM-карту {number}: {exc}"
            ) from exc
        return client, number

    def release(self, client_id: int) -> AttributionResult:
        """Освободить SIM-карту клиента. Повторный вызов ничего не меняет."""
        try:
            with write_transaction():
                client = lock_rows(
                    Client.active().where(Client.id == client_id)
                ).get_or_none()
                if client is None:
                    return AttributionResult.failed(ClientNotFoundError(client_id))

                number = normalize_sim_number(client.sim_number)
                if not number:
                    return AttributionResult.ok(
                        f"У клиента '{client.name}' нет SIM-карты"
                    )

                self._write_client_ref(client.id, None)
                released = self._release_card(number, client.id)
        except DatabaseError as exc:
            logger.error("❌ Ошибка транзакции при освобождении карты клиента id=%s: %s", client_id, exc)
            raise AttributionTransactionError(
                f"Не удалось освободить SIM-карту клиента id={client_id}: {exc}"
            ) from exc

        if not released:
            logger.warning(
                "⚠️ SIM-карта %s не принадлежала клиенту id=%s, изменена только карточка клиента",
                number,
                client.id,
            )
        logger.info("🔓 SIM-карта %s освобождена (клиент id=%s)", number, client.id)
        return AttributionResult.ok(f"SIM-карта {number} освобождена")

    # ─────────────────────────── запись ───────────────────────────

    @staticmethod
    def _release_card(number: str, owner_id: int | None) -> int:
        """Освободить карту, если она свободна или принадлежит ``owner_id``."""
        return (
            SimCard.update(**released_card_fields())
            .where(
                (SimCard.number == number)
                & (
                    SimCard.owner_client_id.is_null(True)
                    | (SimCard.owner_client_id == owner_id)
                )
            )
            .execute()
        )

    def _clear_orphan(self, number: str) -> None:
        SimCard.update(**released_card_fields()).where(SimCard.number == number).execute()
        logger.info("🧹 Осиротевшая SIM-карта %s освобождена перед атрибуцией", number)

    @staticmethod
    def _write_client_ref(client_id: int, number: str | None) -> None:
        Client.update(sim_number=number).where(Client.id == client_id).execute()

    @staticmethod
    def _write_card_assignment(
        card: SimCard,
        *,
        client_id: int,
        vendor_code: str | None,
        assigned_at: datetime,
        activated_at: datetime,
    ) -> None:
        SimCard.update(
            owner_client_id=client_id,
            state=SimCardState.ASSIGNED.value,
            vendor_code=vendor_code,
            assigned_at=assigned_at,
            activated_at=activated_at,
        ).where(SimCard.id == card.id).execute()
