"""Core reconciliation, decoding and mapping services."""

from .reconciler import KeyBasedReconciler
from .dependency_decoder import DependencyDecoder
from .permission_reconciler import PermissionReconciler
from .relationship_discoverer import RelationshipDiscoverer
from .aux_mapper import AuxiliaryMap, AuxiliaryMapper
from .compatibility_mapper import CompatibilityMapper, PicklistMapper
from .org_compare import OrgComparer
from .progress import ProgressChannel

__all__ = [
    "KeyBasedReconciler",
    "DependencyDecoder",
    "PermissionReconciler",
    "RelationshipDiscoverer",
    "AuxiliaryMap",
    "AuxiliaryMapper",
    "CompatibilityMapper",
    "PicklistMapper",
    "OrgComparer",
    "ProgressChannel",
]
