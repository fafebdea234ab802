"""Pydantic models for API requests."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum

from ..models.environment import EnvironmentHandle
from ..models.migration import AuxiliaryReference, MigrationRequest, RelationshipDescriptor


class MetadataTypeEnum(str, Enum):
    OBJECTS = "objects"
    FIELDS = "fields"
    VALIDATION_RULES = "validationRules"
    FLOWS = "flows"
    PICKLISTS = "picklists"
    DEPENDENCIES = "dependencies"
    PERMISSIONS = "permissions"


class PermissionHolderEnum(str, Enum):
    PROFILE = "Profile"
    PERMISSION_SET = "PermissionSet"


class DependencyEncodingEnum(str, Enum):
    BITFIELD = "bitfield"
    EXPLICIT = "explicit"


# Request Models
class EnvironmentModel(BaseModel):
    instance_url: str
    access_token: str
    org_id: Optional[str] = None
    name: str = ""

    def to_handle(self) -> EnvironmentHandle:
        return EnvironmentHandle(
            instance_url=self.instance_url,
            access_token=self.access_token,
            org_id=self.org_id,
            name=self.name,
        )


class CompareOptions(BaseModel):
    object_name: Optional[str] = None
    field_name: Optional[str] = None
    permission_name: Optional[str] = None
    permission_type: Optional[PermissionHolderEnum] = None
    dependency_encoding: DependencyEncodingEnum = DependencyEncodingEnum.BITFIELD

    def to_options(self) -> Dict[str, Any]:
        options = {
            "object_name": self.object_name,
            "field_name": self.field_name,
            "permission_name": self.permission_name,
            "permission_type": self.permission_type.value if self.permission_type else None,
            "dependency_encoding": self.dependency_encoding.value,
        }
        return {k: v for k, v in options.items() if v is not None}


class CompareRequest(BaseModel):
    source: EnvironmentModel
    target: EnvironmentModel
    metadata_types: List[MetadataTypeEnum]
    options: CompareOptions = Field(default_factory=CompareOptions)


class DiscoverRequest(BaseModel):
    source: EnvironmentModel
    root_type: str


class RelationshipModel(BaseModel):
    child_type: str
    foreign_key_field: str
    cascade_flag: bool = False
    relationship_name: Optional[str] = None


class AuxReferenceModel(BaseModel):
    field: str
    lookup_type: str
    name_field: str = "Name"


class MigrationRunRequest(BaseModel):
    source: EnvironmentModel
    target: EnvironmentModel
    root_type: str
    record_ids: List[str] = Field(default_factory=list)
    relationships: List[RelationshipModel] = Field(default_factory=list)
    external_id_field: Optional[str] = None
    aux_references: List[AuxReferenceModel] = Field(default_factory=list)
    allow_root_only: bool = False
    # entity type -> picklist field -> source value -> target value
    picklist_value_maps: Dict[str, Dict[str, Dict[str, str]]] = Field(default_factory=dict)

    def to_request(self) -> MigrationRequest:
        return MigrationRequest(
            root_type=self.root_type,
            record_ids=list(self.record_ids),
            relationships=[RelationshipDescriptor(**r.model_dump()) for r in self.relationships],
            external_id_field=self.external_id_field,
            aux_references=[AuxiliaryReference(**a.model_dump()) for a in self.aux_references],
            allow_root_only=self.allow_root_only,
            picklist_value_maps=self.picklist_value_maps,
        )
