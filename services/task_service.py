"""CRUD-операции для задач, нужные корзине."""

import logging

from database.db import db
from database.models import Task, TaskPriority

logger = logging.getLogger(__name__)

# Поля, допустимые для создания задач
TASK_ALLOWED_FIELDS = {
    "title",
    "description",
    "priority",
    "status",
    "due_date",
    "client",
    "client_id",
    "user_id",
}


def _clean_task_data(data: dict[str, object]) -> dict[str, object]:
    """Отфильтровать допустимые поля и убрать пустые значения."""
    return {
        key: value
        for key, value in data.items()
        if key in TASK_ALLOWED_FIELDS and value not in ("", None)
    }


def add_task(**kwargs) -> Task:
    """Создать задачу."""
    clean_data = _clean_task_data(kwargs)
    if not clean_data.get("title"):
        raise ValueError("Поле 'title' обязательно для задачи")
    priority = clean_data.get("priority", TaskPriority.MEDIUM.value)
    clean_data["priority"] = TaskPriority(priority).value

    with db.atomic():
        task = Task.create(**clean_data)

    logger.info("📝 Создана задача #%s: '%s' (due %s)", task.id, task.title, task.due_date)
    return task


def mark_task_deleted(task: Task | int) -> bool:
    task_obj = task if isinstance(task, Task) else Task.active().where(Task.id == task).get_or_none()
    if task_obj is None or task_obj.is_deleted:
        logger.warning("❗ Задача %s не найдена для удаления", task)
        return False
    with db.atomic():
        task_obj.soft_delete()
    logger.info("🗑 Задача #%s помечена как удалённая", task_obj.id)
    return True
