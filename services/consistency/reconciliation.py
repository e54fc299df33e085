"""Идемпотентная сверка клиентов и SIM-карт.

Связь «клиент ↔ карта» хранится с двух сторон без внешнего ключа (клиенты
удаляются мягко и должны пережить корзину), поэтому стороны могут
разъехаться. Сверка восстанавливает инварианты в пять фаз; каждая фаза
выполняется в своей транзакции и при повторном запуске ничего не меняет.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable

from database.db import write_transaction
from database.models import Client, SimCard, SimCardState
from services.attribution import released_card_fields
from utils.time_utils import as_datetime, utcnow

from .auditor import ConsistencyAuditor
from .dto import ReconciliationReport

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    def __init__(
        self,
        auditor: ConsistencyAuditor | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._auditor = auditor or ConsistencyAuditor()
        self._clock = clock

    def reconcile(self) -> ReconciliationReport:
        """Полная сверка. Безопасна при повторном и параллельном запуске."""
        logger.info("🔄 Запуск сверки SIM-карт")
        report = ReconciliationReport()
        report.orphans_released = self._clean_orphaned_cards()
        report.client_links_synced = self._sync_from_clients()
        report.card_links_synced = self._sync_from_cards()
        report.vendor_codes_synced = self._sync_vendor_codes()
        report.residual = self._auditor.audit()

        logger.info(
            "✅ Сверка завершена: исправлений %s (сироты=%s, клиент→карта=%s, "
            "карта→клиент=%s, коды продавцов=%s), остаток расхождений %s",
            report.total_corrections,
            report.orphans_released,
            report.client_links_synced,
            report.card_links_synced,
            report.vendor_codes_synced,
            report.residual.total,
        )
        return report

    def reconcile_one(self, client_id: int) -> int:
        """Быстрая сверка одного клиента. Возвращает число исправлений."""
        corrections = 0
        with write_transaction():
            client = Client.active().where(Client.id == client_id).get_or_none()
            owned = list(SimCard.select().where(SimCard.owner_client_id == client_id))

            if client is None:
                for card in owned:
                    corrections += _release(card)
                    logger.info("🧹 SIM-карта %s освобождена (клиент id=%s удалён)", card.number, client_id)
                return corrections

            number = client.sim_number or None
            for card in owned:
                if card.number != number:
                    corrections += _release(card)
                    logger.info(
                        "🧹 SIM-карта %s освобождена: у клиента id=%s указана %r",
                        card.number,
                        client_id,
                        number,
                    )

            if not number:
                return corrections

            card = SimCard.get_or_none(SimCard.number == number)
            if card is None:
                client.sim_number = None
                client.save()
                logger.warning("⚠️ Клиент id=%s ссылался на несуществующую карту %s", client_id, number)
                return corrections + 1

            if card.owner_client_id not in (None, client.id):
                holder = Client.active().where(Client.id == card.owner_client_id).get_or_none()
                if holder is not None and holder.sim_number == number:
                    logger.warning(
                        "⚠️ Карта %s закреплена за клиентом id=%s, на неё же ссылается id=%s; "
                        "оставляем полной сверке",
                        number,
                        holder.id,
                        client_id,
                    )
                    return corrections

            corrections += self._sync_card_to_client(card, client)
            corrections += _sync_vendor_code(card, client)
        return corrections

    # ─────────────────────────── фазы ───────────────────────────

    def _clean_orphaned_cards(self) -> int:
        """1. Карты, чей владелец удалён или не существует."""
        active_ids = Client.active().select(Client.id)
        with write_transaction():
            released = (
                SimCard.update(**released_card_fields())
                .where(
                    SimCard.owner_client_id.is_null(False)
                    & SimCard.owner_client_id.not_in(active_ids)
                )
                .execute()
            )
        logger.info("🧹 Осиротевших SIM-карт освобождено: %s", released)
        return released

    def _sync_from_clients(self) -> int:
        """2. Клиент → карта: карточка клиента считается главной."""
        corrections = 0
        with write_transaction():
            claims: dict[str, list[Client]] = defaultdict(list)
            query = (
                Client.active()
                .where(Client.sim_number.is_null(False) & (Client.sim_number != ""))
                .order_by(Client.id)
            )
            for client in query:
                claims[client.sim_number].append(client)
            cards = {
                card.number: card
                for card in SimCard.select().where(SimCard.number.in_(list(claims)))
            } if claims else {}

            for number, clients in claims.items():
                card = cards.get(number)
                if card is None:
                    for client in clients:
                        logger.warning(
                            "⚠️ SIM-карта %s клиента id=%s не существует, ссылка удалена",
                            number,
                            client.id,
                        )
                        _clear_client_ref(client)
                        corrections += 1
                    continue

                winner = next(
                    (c for c in clients if c.id == card.owner_client_id), clients[0]
                )
                for loser in clients:
                    if loser.id == winner.id:
                        continue
                    logger.warning(
                        "⚠️ SIM-карта %s указана у нескольких клиентов, у id=%s ссылка удалена (остаётся id=%s)",
                        number,
                        loser.id,
                        winner.id,
                    )
                    _clear_client_ref(loser)
                    corrections += 1

                corrections += self._sync_card_to_client(card, winner)
        logger.info("🔗 Синхронизировано клиент → карта: %s", corrections)
        return corrections

    def _sync_from_cards(self) -> int:
        """3. Карта → клиент: вторая, симметричная проверка."""
        corrections = 0
        with write_transaction():
            query = SimCard.select().where(
                SimCard.owner_client_id.is_null(False)
                | (SimCard.state == SimCardState.ASSIGNED.value)
            )
            for card in list(query):
                owner = None
                if card.owner_client_id is not None:
                    owner = (
                        Client.active()
                        .where(Client.id == card.owner_client_id)
                        .get_or_none()
                    )
                if owner is None:
                    corrections += _release(card)
                    logger.info("🧹 SIM-карта %s освобождена (нет активного владельца)", card.number)
                    continue

                if owner.sim_number == card.number:
                    corrections += self._sync_card_to_client(card, owner)
                    continue
                if owner.sim_number:
                    corrections += _release(card)
                    logger.info(
                        "🧹 SIM-карта %s освобождена: у клиента id=%s указана %s",
                        card.number,
                        owner.id,
                        owner.sim_number,
                    )
                    continue

                owner.sim_number = card.number
                if not owner.vendor_code and card.vendor_code:
                    owner.vendor_code = card.vendor_code
                owner.save()
                corrections += 1
                corrections += self._sync_card_to_client(card, owner)
                logger.info("🔗 Клиенту id=%s проставлена SIM-карта %s", owner.id, card.number)
        logger.info("🔗 Синхронизировано карта → клиент: %s", corrections)
        return corrections

    def _sync_vendor_codes(self) -> int:
        """4. Код продавца карты копируется с клиента-владельца."""
        corrections = 0
        with write_transaction():
            query = (
                SimCard.select(SimCard, Client.vendor_code.alias("client_vendor_code"))
                .join(
                    Client,
                    on=(SimCard.owner_client_id == Client.id) & Client.deleted_at.is_null(True),
                )
                .where(
                    (SimCard.state == SimCardState.ASSIGNED.value)
                    & Client.vendor_code.is_null(False)
                    & (Client.vendor_code != "")
                    & (
                        SimCard.vendor_code.is_null(True)
                        | (SimCard.vendor_code != Client.vendor_code)
                    )
                )
                .dicts()
            )
            for row in list(query):
                SimCard.update(vendor_code=row["client_vendor_code"]).where(
                    SimCard.id == row["id"]
                ).execute()
                corrections += 1
        logger.info("🔄 Кодов продавцов синхронизировано: %s", corrections)
        return corrections

    # ─────────────────────────── helpers ───────────────────────────

    def _sync_card_to_client(self, card: SimCard, client: Client) -> int:
        """Привести владельца, состояние и даты карты к клиенту."""
        now = self._clock()
        changes: dict[str, object] = {}
        if card.owner_client_id != client.id:
            changes["owner_client_id"] = client.id
        if card.state != SimCardState.ASSIGNED.value:
            changes["state"] = SimCardState.ASSIGNED.value
        if card.owner_client_id != client.id or card.assigned_at is None:
            changes["assigned_at"] = as_datetime(client.signed_at) or now
        if card.activated_at is None:
            changes["activated_at"] = now
        if not changes:
            return 0

        SimCard.update(**changes).where(SimCard.id == card.id).execute()
        for field_name, value in changes.items():
            setattr(card, field_name, value)
        logger.info("🔗 SIM-карта %s синхронизирована с клиентом id=%s", card.number, client.id)
        return 1


def _release(card: SimCard) -> int:
    fields = released_card_fields()
    SimCard.update(**fields).where(SimCard.id == card.id).execute()
    for field_name, value in fields.items():
        setattr(card, field_name, value)
    return 1


def _clear_client_ref(client: Client) -> None:
    Client.update(sim_number=None).where(Client.id == client.id).execute()
    client.sim_number = None


def _sync_vendor_code(card: SimCard, client: Client) -> int:
    if not client.vendor_code or card.vendor_code == client.vendor_code:
        return 0
    SimCard.update(vendor_code=client.vendor_code).where(SimCard.id == card.id).execute()
    card.vendor_code = client.vendor_code
    return 1
