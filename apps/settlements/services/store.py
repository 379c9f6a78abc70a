"""
Ledger store adapter.

Thin table-oriented facade over the Django ORM. The settlement services only
talk to the ledger through this class, so tests (and other deployments) can
swap in a different store. Database transport failures surface as
StoreUnavailableError.
"""

import functools
import logging
from typing import Any, Dict, Iterable, List, Optional

from django.db import InterfaceError, OperationalError, transaction
from django.utils import timezone

from apps.sites.models import Site, SiteGroup
from apps.settlements.models import (
    BatchLineItem,
    BatchUsageAllocation,
    GroupStockBatch,
    GroupStockTransaction,
    InterSiteSettlement,
    SettlementPayment,
)

from .exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


TABLES = {
    'sites': Site,
    'site_groups': SiteGroup,
    'batches': GroupStockBatch,
    'batch_items': BatchLineItem,
    'transactions': GroupStockTransaction,
    'allocations': BatchUsageAllocation,
    'settlements': InterSiteSettlement,
    'payments': SettlementPayment,
}


def _translate_errors(method):
    """Re-raise database transport failures as StoreUnavailableError."""

    @functools.wraps(method)
    def wrapper(self, table, *args, **kwargs):
        try:
            return method(self, table, *args, **kwargs)
        except (OperationalError, InterfaceError) as e:
            logger.error("Ledger store call %s(%s) failed: %s", method.__name__, table, e)
            raise StoreUnavailableError(
                f"Ledger store unavailable: {e}",
                table=table,
                operation=method.__name__,
            ) from e

    return wrapper


class LedgerStore:
    """
    Table-oriented access to the ledger.

    ``filters`` are Django field lookups, e.g. ``{'settlement__isnull': True}``.
    Rows are returned as model instances.
    """

    def __init__(self, using: str = 'default'):
        self.using = using

    def _manager(self, table: str):
        try:
            model = TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown ledger table: {table}")
        return model.objects.using(self.using)

    def atomic(self):
        """Transaction scope for a multi-step ledger operation."""
        return transaction.atomic(using=self.using)

    @_translate_errors
    def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        ordering: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
        related: Optional[Iterable[str]] = None,
        for_update: bool = False,
    ) -> List[Any]:
        queryset = self._manager(table).filter(**(filters or {}))
        if related:
            queryset = queryset.select_related(*related)
        if for_update:
            queryset = queryset.select_for_update()
        if ordering:
            queryset = queryset.order_by(*ordering)
        if limit is not None:
            queryset = queryset[:limit]
        return list(queryset)

    @_translate_errors
    def get(self, table: str, id, for_update: bool = False, related: Optional[Iterable[str]] = None):
        """Return the row with ``id`` or None."""
        queryset = self._manager(table)
        if related:
            queryset = queryset.select_related(*related)
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=id).first()

    @_translate_errors
    def insert(self, table: str, row: Dict[str, Any]):
        return self._manager(table).create(**row)

    @staticmethod
    def _stamped(table: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        # QuerySet.update() skips auto_now fields
        model = TABLES[table]
        if 'updated_at' not in patch and any(f.name == 'updated_at' for f in model._meta.fields):
            return {**patch, 'updated_at': timezone.now()}
        return patch

    @_translate_errors
    def update(self, table: str, id, patch: Dict[str, Any]) -> int:
        return self._manager(table).filter(pk=id).update(**self._stamped(table, patch))

    @_translate_errors
    def update_where(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> int:
        """
        Conditional update in a single statement.

        Returns the number of rows that matched ``filters`` at write time,
        which is how claims detect a lost race.
        """
        return self._manager(table).filter(**filters).update(**self._stamped(table, patch))

    @_translate_errors
    def delete(self, table: str, id) -> int:
        deleted, _ = self._manager(table).filter(pk=id).delete()
        return deleted

    @_translate_errors
    def delete_where(self, table: str, filters: Dict[str, Any]) -> int:
        deleted, _ = self._manager(table).filter(**filters).delete()
        return deleted

    @_translate_errors
    def aggregate(self, table: str, filters: Optional[Dict[str, Any]] = None, **aggregates) -> Dict[str, Any]:
        return self._manager(table).filter(**(filters or {})).aggregate(**aggregates)
