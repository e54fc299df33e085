from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class DriftKind(str, Enum):
    ORPHANED_SIM_CARD = "orphaned_sim_card"
    REFERENCE_MISMATCH = "reference_mismatch"
    MISSING_SIM_CARD = "missing_sim_card"
    DUPLICATE_HOLDER = "duplicate_holder"
    VENDOR_MISMATCH = "vendor_mismatch"


@dataclass(frozen=True)
class DriftFinding:
    """Одно расхождение между клиентом и SIM-картой."""

    kind: DriftKind
    sim_number: str | None
    client_id: int | None
    detail: str = ""


@dataclass
class AuditReport:
    counts: dict[DriftKind, int] = field(
        default_factory=lambda: {kind: 0 for kind in DriftKind}
    )
    samples: dict[DriftKind, list[DriftFinding]] = field(
        default_factory=lambda: {kind: [] for kind in DriftKind}
    )
    sample_size: int = 5

    def add(self, finding: DriftFinding) -> None:
        self.counts[finding.kind] += 1
        bucket = self.samples[finding.kind]
        if len(bucket) < self.sample_size:
            bucket.append(finding)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def is_consistent(self) -> bool:
        return self.total == 0

    def summary(self) -> dict[str, int]:
        return {kind.value: count for kind, count in self.counts.items()}


@dataclass
class ReconciliationReport:
    orphans_released: int = 0
    client_links_synced: int = 0
    card_links_synced: int = 0
    vendor_codes_synced: int = 0
    residual: AuditReport | None = None

    @property
    def total_corrections(self) -> int:
        return (
            self.orphans_released
            + self.client_links_synced
            + self.card_links_synced
            + self.vendor_codes_synced
        )
