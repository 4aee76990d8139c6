"""Store-level authorization for order transitions."""

from apps.stores.models import StoreAdmin

from .domain import AuthorizationPort


class StoreRoleAuthorization(AuthorizationPort):
    """Allow platform superusers, the store owner and the store's admins."""

    def can_transition(self, caller, store, order) -> bool:
        if caller is None or not getattr(caller, "is_authenticated", False):
            return False
        if not caller.is_active:
            return False
        if caller.is_superuser:
            return True
        if store.owner_id == caller.pk:
            return True
        return StoreAdmin.objects.filter(store=store, user_id=caller.pk).exists()

    def visible_store_ids(self, caller):
        """Stores whose orders ``caller`` may list, or None for all stores."""
        if caller.is_superuser:
            return None
        owned = set(caller.owned_stores.values_list("id", flat=True))
        administered = set(
            StoreAdmin.objects.filter(user_id=caller.pk).values_list("store_id", flat=True)
        )
        return owned | administered
