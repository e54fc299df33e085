"""Аудит согласованности клиентов и SIM-карт (только чтение)."""

from __future__ import annotations

import logging

from peewee import JOIN, fn

from database.models import Client, SimCard, SimCardState

from .dto import AuditReport, DriftFinding, DriftKind

logger = logging.getLogger(__name__)


def _has_sim_number():
    return Client.sim_number.is_null(False) & (Client.sim_number != "")


class ConsistencyAuditor:
    """Сканирует обе таблицы и описывает расхождения.

    Аудитор ничего не исправляет: он делает дрейф наблюдаемым для
    оператора и тестов независимо от логики ремонта
    (см. :class:`~services.consistency.reconciliation.ReconciliationEngine`).
    """

    def __init__(self, sample_size: int = 5) -> None:
        self._sample_size = sample_size

    def audit(self) -> AuditReport:
        report = AuditReport(sample_size=self._sample_size)
        duplicates = self._collect_duplicates(report)
        self._scan_cards(report)
        self._scan_clients(report, duplicates)

        if report.is_consistent:
            logger.info("✅ Аудит SIM-карт: расхождений нет")
        else:
            logger.warning(
                "⚠️ Аудит SIM-карт: %s расхождений %s", report.total, report.summary()
            )
        return report

    # ─────────────────────────── проходы ───────────────────────────

    def _collect_duplicates(self, report: AuditReport) -> set[str]:
        holders = fn.COUNT(Client.id)
        query = (
            Client.active()
            .select(Client.sim_number, holders.alias("holders"), fn.MIN(Client.id).alias("first_id"))
            .where(_has_sim_number())
            .group_by(Client.sim_number)
            .having(holders > 1)
            .dicts()
        )
        numbers: set[str] = set()
        for row in query:
            numbers.add(row["sim_number"])
            report.add(
                DriftFinding(
                    DriftKind.DUPLICATE_HOLDER,
                    row["sim_number"],
                    row["first_id"],
                    f"{row['holders']} активных клиентов ссылаются на одну карту",
                )
            )
        return numbers

    def _scan_cards(self, report: AuditReport) -> None:
        query = (
            SimCard.select(
                SimCard.number,
                SimCard.owner_client_id,
                SimCard.state,
                SimCard.vendor_code,
                Client.id.alias("client_id"),
                Client.sim_number.alias("client_sim_number"),
                Client.vendor_code.alias("client_vendor_code"),
            )
            .join(
                Client,
                JOIN.LEFT_OUTER,
                on=(SimCard.owner_client_id == Client.id) & Client.deleted_at.is_null(True),
            )
            .where(
                SimCard.owner_client_id.is_null(False)
                | (SimCard.state == SimCardState.ASSIGNED.value)
            )
            .dicts()
        )
        for row in query:
            number = row["number"]
            owner_id = row["owner_client_id"]
            if owner_id is None:
                report.add(
                    DriftFinding(DriftKind.REFERENCE_MISMATCH, number, None, "карта занята без владельца")
                )
                continue
            if row["client_id"] is None:
                report.add(
                    DriftFinding(
                        DriftKind.ORPHANED_SIM_CARD,
                        number,
                        owner_id,
                        "владелец удалён или не существует",
                    )
                )
                continue
            if row["client_sim_number"] != number:
                report.add(
                    DriftFinding(
                        DriftKind.REFERENCE_MISMATCH,
                        number,
                        owner_id,
                        f"у клиента указана карта {row['client_sim_number']!r}",
                    )
                )
                continue
            if row["state"] != SimCardState.ASSIGNED.value:
                report.add(
                    DriftFinding(
                        DriftKind.REFERENCE_MISMATCH,
                        number,
                        owner_id,
                        f"карта с владельцем в состоянии {row['state']!r}",
                    )
                )
                continue
            client_code = row["client_vendor_code"]
            if client_code and row["vendor_code"] != client_code:
                report.add(
                    DriftFinding(
                        DriftKind.VENDOR_MISMATCH,
                        number,
                        owner_id,
                        f"код продавца {row['vendor_code']!r} вместо {client_code!r}",
                    )
                )

    def _scan_clients(self, report: AuditReport, duplicates: set[str]) -> None:
        query = (
            Client.select(
                Client.id,
                Client.sim_number,
                SimCard.number.alias("card_number"),
                SimCard.owner_client_id.alias("card_owner_id"),
            )
            .join(SimCard, JOIN.LEFT_OUTER, on=(Client.sim_number == SimCard.number))
            .where(Client.deleted_at.is_null(True) & _has_sim_number())
            .dicts()
        )
        for row in query:
            number = row["sim_number"]
            if number in duplicates:
                continue
            if row["card_number"] is None:
                report.add(
                    DriftFinding(
                        DriftKind.MISSING_SIM_CARD, number, row["id"], "карта не найдена"
                    )
                )
            elif row["card_owner_id"] != row["id"]:
                report.add(
                    DriftFinding(
                        DriftKind.REFERENCE_MISMATCH,
                        number,
                        row["id"],
                        f"владелец карты id={row['card_owner_id']}",
                    )
                )
