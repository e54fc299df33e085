"""Ошибки атрибуции SIM-карт."""

from __future__ import annotations


class AttributionError(ValueError):
    """Нарушение бизнес-правила атрибуции. Не повторяется автоматически."""


class ClientNotFoundError(AttributionError):
    def __init__(self, client_id: int):
        super().__init__(f"Клиент id={client_id} не найден или удалён")
        self.client_id = client_id


class SimCardNotFoundError(AttributionError):
    def __init__(self, number: str):
        super().__init__(f"SIM-карта {number!r} не найдена")
        self.number = number


class SimCardAlreadyAssignedError(AttributionError):
    """Raised when the card is held by another active client."""

    def __init__(self, number: str, holder_id: int, holder_name: str):
        super().__init__(
            f"SIM-карта {number} уже закреплена за клиентом '{holder_name}' (id={holder_id})"
        )
        self.number = number
        self.holder_id = holder_id
        self.holder_name = holder_name


class ClientAlreadyHasSimCardError(AttributionError):
    def __init__(self, client_id: int, client_name: str, current_number: str):
        super().__init__(
            f"У клиента '{client_name}' (id={client_id}) уже есть SIM-карта {current_number}"
        )
        self.client_id = client_id
        self.current_number = current_number


class AttributionTransactionError(RuntimeError):
    """Сбой хранилища во время записи; вызов можно безопасно повторить."""
