"""
Custom permission classes for settlements app.

Reading balances and settlements needs an authenticated user. Changing
ledger state (usage, settlements, payments) is limited to staff and to users
holding the ``settlements.change_intersitesettlement`` permission.
"""
from rest_framework.permissions import BasePermission, SAFE_METHODS


def can_manage_settlements(user) -> bool:
    """May this user change settlement state?"""
    if not user or not user.is_authenticated:
        return False
    return user.is_staff or user.has_perm('settlements.change_intersitesettlement')


class CanManageSettlements(BasePermission):
    """
    Permission to mutate settlement and stock ledger state.

    Safe methods are always allowed; authentication is enforced separately
    with IsAuthenticated.

    Usage:
        @permission_classes([IsAuthenticated, CanManageSettlements])
        def generate_settlement_view(request, group_id):
            ...
    """

    message = 'You do not have permission to manage inter-site settlements.'

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return can_manage_settlements(request.user)
