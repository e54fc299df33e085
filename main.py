import logging
import signal
import threading

from config import Settings, get_settings
from core.app_context import AppContext
from database.init import init_from_env
from services.scheduler import register_maintenance_jobs
from utils.logging_config import setup_logging

__all__ = ["main"]


def main(settings: Settings | None = None) -> int:
    """Запускает фоновый сервис сверки SIM-карт и очистки корзины."""

    settings = settings or get_settings()
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL не задан в .env")

    init_from_env(settings.database_url)
    setup_logging(settings)
    logger = logging.getLogger(__name__)

    context = AppContext(settings=settings)

    # ───── Стартовая проверка ─────
    report = context.consistency_auditor.audit()
    if not report.is_consistent:
        logger.warning("⚠️ На старте найдено расхождений: %s", report.total)

    # ───── Планировщик ─────
    scheduler = context.scheduler
    register_maintenance_jobs(
        scheduler,
        reconcile=context.reconciliation_engine.reconcile,
        purge_expired=context.trash_service.purge_expired,
        settings=settings,
    )

    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("🛑 Получен сигнал %s, останавливаемся", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        stop.wait()
    finally:
        scheduler.shutdown(wait=True)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
