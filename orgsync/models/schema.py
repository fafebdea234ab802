"""Entity types, declared record schemas and typed metadata containers."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
from enum import Enum


class EntityType(str, Enum):
    """Metadata and record collections the fetchers can return."""
    OBJECT = "object"
    FIELD = "field"
    PICKLIST_VALUE = "picklist_value"
    FIELD_DEPENDENCY = "field_dependency"
    VALIDATION_RULE = "validation_rule"
    FLOW = "flow"
    PROFILE = "profile"
    PERMISSION_SET = "permission_set"
    OBJECT_PERMISSION = "object_permission"
    FIELD_PERMISSION = "field_permission"
    CHILD_RELATIONSHIP = "child_relationship"
    RECORD = "record"


class AttributeType(str, Enum):
    """Declared attribute types. Used to pick the default for an absent side."""
    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    LIST = "list"
    MAPPING = "mapping"

    def empty_value(self) -> Any:
        if self == AttributeType.BOOLEAN:
            return False
        if self == AttributeType.STRING:
            return ""
        if self == AttributeType.LIST:
            return []
        if self == AttributeType.MAPPING:
            return {}
        return None


@dataclass(frozen=True)
class EntitySchema:
    """Declared shape of one entity type: its natural key and typed attributes."""
    entity_type: EntityType
    key_fields: Tuple[str, ...]
    attributes: Mapping[str, AttributeType] = field(default_factory=dict)

    def attribute_type(self, name: str) -> Optional[AttributeType]:
        return self.attributes.get(name)

    def key_of(self, record: Mapping[str, Any]) -> Any:
        """Natural key of a record: a scalar for single keys, a tuple for composite keys."""
        if len(self.key_fields) == 1:
            return record.get(self.key_fields[0])
        values = tuple(record.get(name) for name in self.key_fields)
        if any(v is None for v in values):
            return None
        return values


_S = AttributeType.STRING
_B = AttributeType.BOOLEAN
_N = AttributeType.NUMBER
_L = AttributeType.LIST
_M = AttributeType.MAPPING

ENTITY_SCHEMAS: Dict[EntityType, EntitySchema] = {
    EntityType.OBJECT: EntitySchema(EntityType.OBJECT, ("name",), {
        "label": _S, "custom": _B, "queryable": _B, "createable": _B,
    }),
    EntityType.FIELD: EntitySchema(EntityType.FIELD, ("name",), {
        "label": _S, "type": _S, "length": _N, "precision": _N, "scale": _N,
        "required": _B, "unique": _B, "externalId": _B, "custom": _B,
        "calculated": _B, "createable": _B, "referenceTo": _L, "picklistValues": _L,
    }),
    EntityType.PICKLIST_VALUE: EntitySchema(EntityType.PICKLIST_VALUE, ("value",), {
        "label": _S, "active": _B, "default": _B,
    }),
    EntityType.FIELD_DEPENDENCY: EntitySchema(EntityType.FIELD_DEPENDENCY, ("dependentField",), {
        "controllingField": _S, "valueMappings": _M,
    }),
    EntityType.VALIDATION_RULE: EntitySchema(EntityType.VALIDATION_RULE, ("name",), {
        "active": _B, "errorMessage": _S, "description": _S, "errorField": _S, "object": _S,
    }),
    EntityType.FLOW: EntitySchema(EntityType.FLOW, ("name",), {
        "label": _S, "type": _S, "status": _S, "version": _N, "description": _S,
    }),
    EntityType.PROFILE: EntitySchema(EntityType.PROFILE, ("name",), {
        "license": _S, "userType": _S, "description": _S,
    }),
    EntityType.PERMISSION_SET: EntitySchema(EntityType.PERMISSION_SET, ("name",), {
        "label": _S, "license": _S, "description": _S, "namespace": _S,
    }),
    EntityType.OBJECT_PERMISSION: EntitySchema(EntityType.OBJECT_PERMISSION, ("object",), {
        "create": _B, "read": _B, "edit": _B, "delete": _B, "viewAll": _B, "modifyAll": _B,
    }),
    EntityType.FIELD_PERMISSION: EntitySchema(EntityType.FIELD_PERMISSION, ("object", "field"), {
        "read": _B, "edit": _B,
    }),
    EntityType.CHILD_RELATIONSHIP: EntitySchema(EntityType.CHILD_RELATIONSHIP, ("childSObject", "field"), {
        "relationshipName": _S, "cascadeDelete": _B,
    }),
    EntityType.RECORD: EntitySchema(EntityType.RECORD, ("Id",), {}),
}


def schema_for(entity_type: EntityType) -> EntitySchema:
    return ENTITY_SCHEMAS[entity_type]


class EntityCollection:
    """
    Read-only snapshot of records of one entity type.

    Each record is a flat attribute mapping. Records are exposed as
    read-only mapping proxies; copy with ``dict(record)`` before changing.
    """

    def __init__(self, entity_type: EntityType, records: Iterable[Mapping[str, Any]] = ()):
        self.entity_type = entity_type
        self._records: Tuple[Mapping[str, Any], ...] = tuple(
            MappingProxyType(dict(r)) for r in records
        )

    @property
    def schema(self) -> EntitySchema:
        return schema_for(self.entity_type)

    @property
    def records(self) -> Tuple[Mapping[str, Any], ...]:
        return self._records

    def __iter__(self) -> Iterator[Mapping[str, Any]]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> Mapping[str, Any]:
        return self._records[index]

    def __repr__(self) -> str:
        return f"EntityCollection({self.entity_type.value}, {len(self._records)} records)"

    def to_list(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._records]


@dataclass(frozen=True)
class PicklistValue:
    """One value of a picklist field."""
    value: str
    label: str = ""
    active: bool = True
    default: bool = False
    valid_for: Optional[str] = None  # base64 bitfield, dependent picklists only

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "label": self.label or self.value,
            "active": self.active,
            "default": self.default,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PicklistValue":
        """Create from a describe entry or from this class's own dictionary form."""
        return cls(
            value=data.get("value", ""),
            label=data.get("label") or data.get("value", ""),
            active=bool(data.get("active", True)),
            default=bool(data.get("default", data.get("defaultValue", False))),
            valid_for=data.get("validFor", data.get("valid_for")),
        )


@dataclass
class FieldDefinition:
    """Definition of a field as reported by an environment's describe call."""
    name: str
    type: str = "string"
    label: str = ""
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    required: bool = False
    unique: bool = False
    external_id: bool = False
    custom: bool = False
    calculated: bool = False
    createable: bool = True
    reference_to: List[str] = field(default_factory=list)
    relationship_name: Optional[str] = None
    picklist_values: List[PicklistValue] = field(default_factory=list)
    controller_name: Optional[str] = None
    dependent_picklist: bool = False

    @property
    def is_picklist(self) -> bool:
        return self.type in ("picklist", "multipicklist")

    @property
    def is_reference(self) -> bool:
        return self.type == "reference"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the flat attribute form used by the reconciler."""
        result = {
            "name": self.name,
            "label": self.label or self.name,
            "type": self.type,
            "length": self.length,
            "precision": self.precision,
            "scale": self.scale,
            "required": self.required,
            "unique": self.unique,
            "externalId": self.external_id,
            "custom": self.custom,
            "calculated": self.calculated,
            "createable": self.createable,
            "referenceTo": list(self.reference_to),
            "picklistValues": [v.to_dict() for v in self.picklist_values],
        }
        if self.relationship_name:
            result["relationshipName"] = self.relationship_name
        if self.controller_name:
            result["controllerName"] = self.controller_name
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldDefinition":
        """
        Create from a describe field entry or from ``to_dict`` output.

        ``required`` is taken as given when present; otherwise a field is
        required when it is not nillable and not defaulted on create.
        """
        if "required" in data:
            required = bool(data["required"])
        else:
            required = data.get("nillable") is False and not data.get("defaultedOnCreate", False)

        return cls(
            name=data.get("name", ""),
            type=data.get("type", "string"),
            label=data.get("label") or data.get("name", ""),
            length=data.get("length"),
            precision=data.get("precision"),
            scale=data.get("scale"),
            required=required,
            unique=bool(data.get("unique", False)),
            external_id=bool(data.get("externalId", False)),
            custom=bool(data.get("custom", False)),
            calculated=bool(data.get("calculated", False)),
            createable=bool(data.get("createable", True)),
            reference_to=list(data.get("referenceTo") or []),
            relationship_name=data.get("relationshipName"),
            picklist_values=[PicklistValue.from_dict(v) for v in data.get("picklistValues") or []],
            controller_name=data.get("controllerName"),
            dependent_picklist=bool(data.get("dependentPicklist", False)),
        )
