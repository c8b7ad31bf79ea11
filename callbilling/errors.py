# callbilling/errors.py
"""
Error taxonomy for the ingestion and billing pipeline.

Every error carries the HTTP status it maps to and a short `error_type`
tag that also names the row written to the webhook error channel.
"""


class BillingError(Exception):
    status_code = 500
    error_type = "billing_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PayloadValidationError(BillingError):
    """Malformed or incomplete webhook payload. Nothing is written."""

    status_code = 400
    error_type = "invalid_payload"


class ResolutionError(BillingError):
    """The event cannot be tied to an agent or a payer."""

    status_code = 400
    error_type = "resolution_error"


class AgentNotFoundError(ResolutionError):
    error_type = "agent_not_found"


class AgentInactiveError(ResolutionError):
    error_type = "agent_inactive"


class OwnerNotFoundError(ResolutionError):
    error_type = "user_mapping_not_found"


class AmbiguousOwnerError(ResolutionError):
    error_type = "ambiguous_owner"


class LedgerError(BillingError):
    """Billing could not complete; the call record still stands."""

    status_code = 409
    error_type = "ledger_error"


class AccountBlockedError(LedgerError):
    error_type = "account_blocked"


class CreditAccountNotFoundError(LedgerError):
    status_code = 404
    error_type = "credit_account_not_found"


class InvalidAmountError(LedgerError):
    status_code = 400
    error_type = "invalid_amount"


class LedgerUnavailableError(LedgerError):
    status_code = 503
    error_type = "ledger_unavailable"


class PersistenceError(BillingError):
    """The call record could not be stored; the event is not processed."""

    status_code = 500
    error_type = "persistence_error"


class ProviderError(BillingError):
    """The telephony provider's API refused or failed a request."""

    status_code = 502
    error_type = "provider_error"
