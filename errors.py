class InvoicingError(Exception):
    """Base class for errors raised by the estimating/invoicing core."""


class ValidationError(InvoicingError):
    def __init__(self, errors):
        # errors: {field: message}
        if isinstance(errors, str):
            errors = {"__all__": errors}
        self.errors = dict(errors)
        super().__init__("; ".join(f"{k}: {v}" for k, v in self.errors.items()))


class NotFoundError(InvoicingError):
    def __init__(self, kind, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id!r} not found")


class InvalidTransitionError(InvoicingError):
    pass
