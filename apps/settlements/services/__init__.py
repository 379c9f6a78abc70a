"""
Settlements app services layer.

Services contain business logic and orchestrate operations across models.
All state-changing operations run in a ledger transaction.
"""

from .exceptions import (
    SettlementsServiceError,
    StoreUnavailableError,
    NoBalanceFoundError,
    AllocationClaimedError,
    InvalidTransitionError,
    NegativeRemainderError,
    SettlementNotFoundError,
    BatchNotFoundError,
    SiteNotFoundError,
    TransactionNotFoundError,
    SiteNotInGroupError,
    InsufficientQuantityError,
    BatchCompletedError,
    DuplicateRefCodeError,
    InvalidPaymentError,
    InvalidNetSettlementError,
    VendorUnpaidError,
    InsufficientPermissionsError,
)

from .store import LedgerStore

from .batch_allocation import (
    BatchAllocation,
    allocate_batch,
    get_batch_allocation,
)

from .balance_aggregation import (
    InterSiteBalance,
    aggregate_balances,
    list_balances,
    find_balance,
    week_bounds,
)

from .stock_ledger import (
    record_group_purchase,
    record_usage,
    complete_batch,
    delete_purchase,
)

from .settlement_lifecycle import (
    generate_settlement,
    approve_settlement,
    record_payment,
    cancel_settlement,
    cancel_settled_settlement,
    delete_settlement,
    delete_unsettled_usage,
    net_settle,
)

from .reconciliation import ReconciliationService


__all__ = [
    # Exceptions
    'SettlementsServiceError',
    'StoreUnavailableError',
    'NoBalanceFoundError',
    'AllocationClaimedError',
    'InvalidTransitionError',
    'NegativeRemainderError',
    'SettlementNotFoundError',
    'BatchNotFoundError',
    'SiteNotFoundError',
    'TransactionNotFoundError',
    'SiteNotInGroupError',
    'InsufficientQuantityError',
    'BatchCompletedError',
    'DuplicateRefCodeError',
    'InvalidPaymentError',
    'InvalidNetSettlementError',
    'VendorUnpaidError',
    'InsufficientPermissionsError',

    # Ledger store
    'LedgerStore',

    # Batch allocation
    'BatchAllocation',
    'allocate_batch',
    'get_batch_allocation',

    # Balances
    'InterSiteBalance',
    'aggregate_balances',
    'list_balances',
    'find_balance',
    'week_bounds',

    # Stock ledger
    'record_group_purchase',
    'record_usage',
    'complete_batch',
    'delete_purchase',

    # Settlement lifecycle
    'generate_settlement',
    'approve_settlement',
    'record_payment',
    'cancel_settlement',
    'cancel_settled_settlement',
    'delete_settlement',
    'delete_unsettled_usage',
    'net_settle',

    # Facade
    'ReconciliationService',
]
