"""Пакет прикладных сервисов.

Импортируйте нужные подмодули напрямую, например:
    from services import client_service as cs
    from services.attribution import AttributionExecutor
    from services.trash import TrashService
"""

__all__: list[str] = []
