"""
Application-level errors shared by the use cases
"""


class NotFoundError(LookupError):
    """Referenced row (subscription, payment, category, exchange rate...) does not exist."""

    def __init__(self, entity: str, entity_id=None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class SubscriptionStateError(ValueError):
    """Requested transition is not allowed from the subscription's current state."""
    pass
