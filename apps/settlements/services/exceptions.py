"""
Domain-specific exceptions for settlements app.

These exceptions represent business rule violations and data-integrity
findings. Each one carries the ids and state involved on ``details`` so
callers can render a useful message. Views convert them to HTTP responses.
"""


class SettlementsServiceError(Exception):
    """Base exception for all settlements service errors."""

    code = 'settlements_error'

    def __init__(self, message, **details):
        self.message = message
        self.details = details
        super().__init__(message)


class StoreUnavailableError(SettlementsServiceError):
    """Raised when the ledger store cannot be reached."""
    code = 'store_unavailable'


class NoBalanceFoundError(SettlementsServiceError):
    """Raised when there is nothing unsettled left for a balance key."""
    code = 'no_balance_found'


class AllocationClaimedError(SettlementsServiceError):
    """Raised when usage allocations are already claimed by a live settlement."""
    code = 'allocation_claimed'


class InvalidTransitionError(SettlementsServiceError):
    """Raised when a settlement is not in a state that allows the operation."""
    code = 'invalid_transition'


class NegativeRemainderError(SettlementsServiceError):
    """Raised when a batch has more usage allocated than was purchased."""
    code = 'negative_remainder'


class SettlementNotFoundError(SettlementsServiceError):
    """Raised when a settlement does not exist."""
    code = 'settlement_not_found'


class BatchNotFoundError(SettlementsServiceError):
    """Raised when a stock batch does not exist."""
    code = 'batch_not_found'


class SiteNotFoundError(SettlementsServiceError):
    """Raised when a site or site group does not exist."""
    code = 'site_not_found'


class TransactionNotFoundError(SettlementsServiceError):
    """Raised when a stock transaction does not exist."""
    code = 'transaction_not_found'


class SiteNotInGroupError(SettlementsServiceError):
    """Raised when a site is not a member of the batch's site group."""
    code = 'site_not_in_group'


class InsufficientQuantityError(SettlementsServiceError):
    """Raised when usage exceeds the quantity left in a batch."""
    code = 'insufficient_quantity'


class BatchCompletedError(SettlementsServiceError):
    """Raised when writing usage to a batch that is already completed."""
    code = 'batch_completed'


class DuplicateRefCodeError(SettlementsServiceError):
    """Raised when a batch reference code is already taken."""
    code = 'duplicate_ref_code'


class InvalidPaymentError(SettlementsServiceError):
    """Raised when a payment amount or mode is not acceptable."""
    code = 'invalid_payment'


class InvalidNetSettlementError(SettlementsServiceError):
    """Raised when two balances cannot be netted against each other."""
    code = 'invalid_net_settlement'


class VendorUnpaidError(SettlementsServiceError):
    """Raised when a balance includes batches whose vendor is not paid yet."""
    code = 'vendor_unpaid'


class InsufficientPermissionsError(SettlementsServiceError):
    """Raised when the actor may not mutate settlement state."""
    code = 'insufficient_permissions'
