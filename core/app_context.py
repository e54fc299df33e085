"""Контекст приложения и управление зависимостями."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any, ClassVar

from config import Settings
from services.attribution import AttributionExecutor, AttributionValidator
from services.consistency import ConsistencyAuditor, ReconciliationEngine
from services.scheduler import JobScheduler
from services.trash import TrashService, TtlCache

DependencyName = str


class AppContext:
    """Контекст приложения с ленивым созданием зависимостей."""

    _DEPENDENCY_NAMES: ClassVar[set[str]] = {
        "attribution_validator",
        "attribution_executor",
        "consistency_auditor",
        "reconciliation_engine",
        "trash_cache",
        "trash_service",
        "scheduler",
    }

    def __init__(
        self,
        settings: Settings,
        *,
        scheduler_factory: Callable[[], JobScheduler] = JobScheduler,
        overrides: dict[str, Any] | None = None,
        instances: dict[str, Any] | None = None,
    ) -> None:
        self._settings = settings
        self._scheduler_factory = scheduler_factory
        self._overrides: dict[str, Any] = dict(overrides or {})
        self._instances: dict[str, Any] = dict(instances or {})

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def attribution_validator(self) -> AttributionValidator:
        return self._get_dependency("attribution_validator", AttributionValidator)

    @property
    def attribution_executor(self) -> AttributionExecutor:
        return self._get_dependency(
            "attribution_executor",
            lambda: AttributionExecutor(self.attribution_validator),
        )

    @property
    def consistency_auditor(self) -> ConsistencyAuditor:
        return self._get_dependency(
            "consistency_auditor",
            lambda: ConsistencyAuditor(sample_size=self._settings.audit_sample_size),
        )

    @property
    def reconciliation_engine(self) -> ReconciliationEngine:
        return self._get_dependency(
            "reconciliation_engine",
            lambda: ReconciliationEngine(self.consistency_auditor),
        )

    @property
    def trash_cache(self) -> TtlCache:
        return self._get_dependency(
            "trash_cache",
            lambda: TtlCache(self._settings.trash_cache_ttl_seconds),
        )

    @property
    def trash_service(self) -> TrashService:
        return self._get_dependency(
            "trash_service",
            lambda: TrashService(
                self.trash_cache,
                retention=timedelta(hours=self._settings.trash_retention_hours),
            ),
        )

    @property
    def scheduler(self) -> JobScheduler:
        return self._get_dependency("scheduler", self._scheduler_factory)

    def override(self, **deps: Any) -> "AppContext":
        """Создать новый контекст с переопределёнными зависимостями."""

        override_args = dict(deps)
        new_settings = override_args.pop("settings", self._settings)

        unknown = set(override_args) - self._DEPENDENCY_NAMES
        if unknown:
            names = ", ".join(sorted(unknown))
            raise ValueError(f"Неизвестные зависимости для переопределения: {names}")

        overrides = dict(self._overrides)
        overrides.update(override_args)
        if new_settings is self._settings:
            instances = {
                key: value
                for key, value in self._instances.items()
                if key not in override_args
            }
        else:
            instances = {}
        return AppContext(
            settings=new_settings,
            scheduler_factory=self._scheduler_factory,
            overrides=overrides,
            instances=instances,
        )

    def _get_dependency(
        self, name: DependencyName, factory: Callable[[], Any]
    ) -> Any:
        if name in self._overrides:
            return self._overrides[name]
        if name not in self._instances:
            self._instances[name] = factory()
        return self._instances[name]


__all__ = ["AppContext"]
