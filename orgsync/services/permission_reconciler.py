"""Reconciliation of object-level and field-level permission grants."""

import logging
from typing import Any, Iterable, Mapping, Optional, Tuple

from ..models.config import EngineConfig
from ..models.reconciliation import PermissionComparison
from ..models.schema import EntityType, schema_for
from .reconciler import KeyBasedReconciler

logger = logging.getLogger(__name__)

Grants = Iterable[Mapping[str, Any]]


def split_grants(grants: Any) -> Tuple[Grants, Grants]:
    """
    Return ``(object_grants, field_grants)`` from a grant holder.

    Accepts a mapping with ``object_permissions``/``field_permissions``
    keys, an object with attributes of the same names, or a pair.
    """
    if isinstance(grants, Mapping):
        return grants.get("object_permissions") or (), grants.get("field_permissions") or ()
    if isinstance(grants, tuple) and len(grants) == 2:
        return grants
    return (
        getattr(grants, "object_permissions", None) or (),
        getattr(grants, "field_permissions", None) or (),
    )


class PermissionReconciler:
    """
    Compares the grants of one permission holder across two environments.

    Object grants are keyed on the object name and field grants on the
    ``(object, field)`` pair, so the same field name on two objects never
    collides. The two kinds are reconciled separately and their items are
    tagged ``object`` and ``field``.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        reconciler: Optional[KeyBasedReconciler] = None
    ):
        self.config = config or EngineConfig()
        self.reconciler = reconciler or KeyBasedReconciler(self.config)

    def reconcile(self, source_grants: Any, target_grants: Any) -> PermissionComparison:
        source_objects, source_fields = split_grants(source_grants)
        target_objects, target_fields = split_grants(target_grants)

        object_result = self.reconciler.reconcile(
            source_objects,
            target_objects,
            schema_for(EntityType.OBJECT_PERMISSION),
            self.config.object_permission_fields,
            kind="object",
        )
        field_result = self.reconciler.reconcile(
            source_fields,
            target_fields,
            schema_for(EntityType.FIELD_PERMISSION),
            self.config.field_permission_fields,
            kind="field",
        )

        comparison = PermissionComparison(object=object_result, field=field_result)
        summary = comparison.combined_summary
        logger.debug(
            f"Permission comparison: {summary.total_items} grants, "
            f"{summary.differences} changed"
        )
        return comparison
