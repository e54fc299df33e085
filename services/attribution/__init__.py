from .dto import AttributionResult, ValidationOutcome
from .errors import (
    AttributionError,
    AttributionTransactionError,
    ClientAlreadyHasSimCardError,
    ClientNotFoundError,
    SimCardAlreadyAssignedError,
    SimCardNotFoundError,
)
from .executor import AttributionExecutor, released_card_fields
from .validator import AttributionValidator

__all__ = [
    "AttributionError",
    "AttributionExecutor",
    "AttributionResult",
    "AttributionTransactionError",
    "AttributionValidator",
    "ClientAlreadyHasSimCardError",
    "ClientNotFoundError",
    "SimCardAlreadyAssignedError",
    "SimCardNotFoundError",
    "ValidationOutcome",
    "released_card_fields",
]
