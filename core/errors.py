class ResourceNotFoundError(LookupError):
    """No resource document exists for the requested type."""


class AlertNotFoundError(LookupError):
    pass


class InvalidAmountError(ValueError):
    """Rejected before reaching the level engine."""
