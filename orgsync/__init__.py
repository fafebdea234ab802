"""
Org Sync

Cross-environment metadata reconciliation and record migration for
multi-tenant business-application platforms.

Supports:
- Comparing objects, fields, picklists, dependencies, validation rules,
  flows and permissions between two environments
- Decoding controlling/dependent picklist relationships from either the
  bitfield or the explicit value-settings representation
- Pre-flight field and picklist compatibility checks
- Migrating a root record set and its child records with identifier and
  lookup remapping
"""

__version__ = "0.1.0"
