from .cache import TtlCache
from .dto import DeletedItem, EntityKind
from .trash_service import PurgeError, TrashService

__all__ = ["DeletedItem", "EntityKind", "PurgeError", "TrashService", "TtlCache"]
