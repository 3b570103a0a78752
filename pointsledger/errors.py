class LedgerError(Exception):
    """Base for every error the ledger reports to its caller."""

    status_code = 400
    default_message = "ledger operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class Forbidden(LedgerError):
    status_code = 403
    default_message = "forbidden"


class NotFound(LedgerError):
    status_code = 404
    default_message = "not found"


class InvalidTransaction(LedgerError):
    default_message = "invalid transaction"


class IneligiblePromotion(LedgerError):
    default_message = "minimum spending not met"


class AlreadyUsed(LedgerError):
    default_message = "promotion already used"


class Expired(LedgerError):
    default_message = "promotion is not active"


class InsufficientFunds(LedgerError):
    default_message = "insufficient points"


class AlreadyProcessed(LedgerError):
    default_message = "redemption has already been processed"


class Conflict(LedgerError):
    status_code = 409
    default_message = "conflicting concurrent write"
