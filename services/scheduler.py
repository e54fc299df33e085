"""Планировщик фоновых задач обслуживания (сверка, очистка корзины)."""

from __future__ import annotations

import functools
import logging
from typing import Any, Callable

from apscheduler.job import Job
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Settings

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "sim_reconcile"
PURGE_JOB_ID = "trash_purge"


def _logged(job_id: str, func: Callable[[], Any]) -> Callable[[], Any]:
    @functools.wraps(func)
    def runner() -> Any:
        try:
            return func()
        except Exception:
            logger.exception("❌ Фоновая задача %s завершилась с ошибкой", job_id)
            raise

    return runner


class JobScheduler:
    """Владелец жизненного цикла периодических задач.

    Каждая задача регистрируется с ``max_instances=1`` и ``coalesce=True``:
    если предыдущий запуск ещё идёт, очередной тик пропускается, а
    накопившиеся пропуски схлопываются в один запуск.
    """

    def __init__(self, scheduler: BackgroundScheduler | None = None) -> None:
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def add_interval_job(
        self, func: Callable[[], Any], *, job_id: str, minutes: int
    ) -> Job:
        job = self._scheduler.add_job(
            _logged(job_id, func),
            IntervalTrigger(minutes=minutes),
            id=job_id,
            name=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("⏱ Задача %s: каждые %s мин.", job_id, minutes)
        return job

    def get_job(self, job_id: str) -> Job | None:
        return self._scheduler.get_job(job_id)

    def start(self) -> None:
        if self._scheduler.running:
            return
        self._scheduler.start()
        logger.info("▶️ Планировщик запущен")

    def shutdown(self, wait: bool = True) -> None:
        """Остановить планировщик, дождавшись текущих задач."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("⏹ Планировщик остановлен")


def register_maintenance_jobs(
    scheduler: JobScheduler,
    *,
    reconcile: Callable[[], Any],
    purge_expired: Callable[[], Any],
    settings: Settings,
) -> None:
    """Зарегистрировать сверку SIM-карт и очистку корзины."""
    scheduler.add_interval_job(
        reconcile, job_id=RECONCILE_JOB_ID, minutes=settings.reconcile_interval_minutes
    )
    scheduler.add_interval_job(
        purge_expired, job_id=PURGE_JOB_ID, minutes=settings.purge_interval_minutes
    )
