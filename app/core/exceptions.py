"""
Billing error taxonomy.

Services raise these; the API layer turns them into JSON responses with the
carried status code (see app.main). ReconciliationError never leaves the
webhook reconciler.
"""


class BillingError(Exception):
    """Base billing exception."""

    status_code = 400
    default_message = "Billing request failed"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BillingError):
    """Bad input shape or values."""

    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BillingError):
    """Plan, subscription or payment does not exist."""

    status_code = 404
    default_message = "Not found"


class ForbiddenError(BillingError):
    """Caller is not an active admin of the cooperative."""

    status_code = 403
    default_message = "Only cooperative admins can manage subscriptions"


class ConflictError(BillingError):
    """Request conflicts with the current subscription state."""

    status_code = 409
    default_message = "Request conflicts with the current subscription state"


class ExternalServiceError(BillingError):
    """The payment provider failed or returned a non-success status."""

    status_code = 400
    default_message = "Payment provider request failed"


class ReconciliationError(BillingError):
    """A webhook event could not be applied. Recorded on the event row."""

    status_code = 200
    default_message = "Webhook event could not be processed"
