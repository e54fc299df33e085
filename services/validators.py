"""Валидаторы и нормализаторы входных данных."""

import re


def normalize_full_name(name: str) -> str:
    """Нормализует ФИО: каждая часть с заглавной буквы.

    Args:
        name: Исходное ФИО.

    Returns:
        str: ФИО в формате ``Дюпон Жан-Мари``.
    """
    parts = re.split(r"\s+", (name or "").strip())

    def norm(word: str) -> str:
        return "-".join(p.capitalize() for p in word.split("-") if p)

    return " ".join(norm(p) for p in parts if p)


def normalize_sim_number(text: str | None) -> str:
    """Убирает все пробелы и приводит номер SIM-карты к верхнему регистру.

    Пустая строка означает, что номер не указан.
    """
    return re.sub(r"\s+", "", text or "").upper()


def normalize_vendor_code(code: str | None) -> str | None:
    """Код продавца без пробелов по краям; пустое значение превращается в ``None``."""
    if code is None:
        return None
    code = code.strip()
    return code or None
