"""Metadata fetcher backed by the platform REST and Tooling APIs."""

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import ConfigurationError, MetadataNotFoundError, TransportError
from ..models.config import EngineConfig
from ..models.environment import EnvironmentHandle
from ..models.schema import EntityCollection, EntityType, FieldDefinition
from ..transport import RestTransport
from .base import MetadataFetcher, RecordQuery, escape_soql

logger = logging.getLogger(__name__)

CHECKBOX_VALUES = [
    {"value": "false", "label": "Unchecked", "active": True},
    {"value": "true", "label": "Checked", "active": True},
]


class RestMetadataFetcher(MetadataFetcher):
    """
    Reads metadata and records from one environment over REST.

    Describe results are normalized into the flat attribute records of
    each entity type's schema.
    """

    def __init__(
        self,
        transport: Optional[RestTransport] = None,
        config: Optional[EngineConfig] = None
    ):
        self.config = config or (transport.config if transport else EngineConfig())
        self.transport = transport or RestTransport(self.config)

        self._handlers = {
            EntityType.OBJECT: self._fetch_objects,
            EntityType.FIELD: self._fetch_fields,
            EntityType.PICKLIST_VALUE: self._fetch_picklist_values,
            EntityType.FIELD_DEPENDENCY: self._fetch_dependencies,
            EntityType.VALIDATION_RULE: self._fetch_validation_rules,
            EntityType.FLOW: self._fetch_flows,
            EntityType.PROFILE: self._fetch_profiles,
            EntityType.PERMISSION_SET: self._fetch_permission_sets,
            EntityType.OBJECT_PERMISSION: self._fetch_object_permissions,
            EntityType.FIELD_PERMISSION: self._fetch_field_permissions,
            EntityType.CHILD_RELATIONSHIP: self._fetch_child_relationships,
        }

    async def fetch(
        self,
        env: EnvironmentHandle,
        entity_type: EntityType,
        filter: Optional[Mapping[str, Any]] = None
    ) -> EntityCollection:
        handler = self._handlers.get(entity_type)
        if handler is None:
            raise ConfigurationError(f"Fetching {entity_type.value} is not supported; use query()")

        records = await handler(env, dict(filter or {}))
        logger.debug(f"Fetched {len(records)} {entity_type.value} records from {env.name or env.instance_url}")
        return EntityCollection(entity_type, records)

    async def query(self, env: EnvironmentHandle, query: RecordQuery) -> EntityCollection:
        records = await self.query_all(env, query.to_soql())
        return EntityCollection(EntityType.RECORD, records)

    async def query_all(self, env: EnvironmentHandle, soql: str, tooling: bool = False) -> List[Dict[str, Any]]:
        """Run a SOQL query and follow ``nextRecordsUrl`` until done."""
        path = "tooling/query" if tooling else "query"
        response = await self.transport.get(env, path, params={"q": soql})
        records = list(response.get("records") or [])

        while not response.get("done", True) and response.get("nextRecordsUrl"):
            response = await self.transport.get(env, response["nextRecordsUrl"])
            records.extend(response.get("records") or [])

        return records

    async def describe(self, env: EnvironmentHandle, object_name: str) -> Dict[str, Any]:
        try:
            return await self.transport.get(env, f"sobjects/{object_name}/describe")
        except TransportError as e:
            if e.status_code == 404:
                raise MetadataNotFoundError(
                    f"Object {object_name} not found in {env.name or env.instance_url}"
                ) from e
            raise

    async def _fetch_objects(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self.transport.get(env, "sobjects")
        return [
            {
                "name": obj.get("name"),
                "label": obj.get("label"),
                "custom": obj.get("custom", False),
                "queryable": obj.get("queryable", False),
                "createable": obj.get("createable", False),
            }
            for obj in response.get("sobjects") or []
        ]

    async def _fetch_fields(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "object")
        describe = await self.describe(env, values["object"])
        return [FieldDefinition.from_dict(f).to_dict() for f in describe.get("fields") or []]

    async def _fetch_picklist_values(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "object", "field")
        describe = await self.describe(env, values["object"])
        field = _find_field(describe, values["field"])
        if field is None:
            raise MetadataNotFoundError(f"Field {values['field']} not found on {values['object']}")

        return [
            {
                "value": pv.get("value"),
                "label": pv.get("label"),
                "active": pv.get("active", True),
                "default": pv.get("defaultValue", False),
                "validFor": pv.get("validFor"),
            }
            for pv in field.get("picklistValues") or []
        ]

    async def _fetch_dependencies(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "object")
        encoding = values.get("encoding", "bitfield")
        if encoding == "explicit":
            return await self._fetch_explicit_dependencies(env, values["object"])
        if encoding != "bitfield":
            raise ConfigurationError(f"Unknown dependency encoding: {encoding}")

        describe = await self.describe(env, values["object"])
        fields = {f.get("name"): f for f in describe.get("fields") or []}
        dependencies = []

        for field in fields.values():
            controller_name = field.get("controllerName")
            if not field.get("dependentPicklist") or not controller_name:
                continue

            controller = fields.get(controller_name) or {}
            if controller.get("type") == "boolean":
                controlling_values = CHECKBOX_VALUES
            else:
                controlling_values = controller.get("picklistValues") or []

            dependencies.append({
                "encoding": "bitfield",
                "dependentField": field.get("name"),
                "controllingField": controller_name,
                "controllingValues": controlling_values,
                "dependentValues": field.get("picklistValues") or [],
            })

        return dependencies

    async def _fetch_explicit_dependencies(self, env: EnvironmentHandle, object_name: str) -> List[Dict[str, Any]]:
        """Read explicit value settings from custom field definitions."""
        entity = await self.query_all(
            env,
            "SELECT DurableId FROM EntityDefinition "
            f"WHERE QualifiedApiName = {escape_soql(object_name)}",
            tooling=True,
        )
        if not entity:
            raise MetadataNotFoundError(f"Object {object_name} not found in {env.name or env.instance_url}")

        fields = await self.query_all(
            env,
            "SELECT Id, DeveloperName FROM CustomField "
            f"WHERE TableEnumOrId = {escape_soql(entity[0].get('DurableId'))}",
            tooling=True,
        )

        # Metadata can only be selected one field at a time
        definitions = await asyncio.gather(*[
            self.query_all(
                env,
                f"SELECT Id, FullName, Metadata FROM CustomField WHERE Id = {escape_soql(f.get('Id'))}",
                tooling=True,
            )
            for f in fields
        ])

        dependencies = []
        for rows in definitions:
            for row in rows:
                metadata = row.get("Metadata") or {}
                value_set = metadata.get("valueSet") or {}
                if not value_set.get("controllingField"):
                    continue

                definition = value_set.get("valueSetDefinition") or {}
                field_values = definition.get("value")
                dependencies.append({
                    "encoding": "explicit",
                    "dependentField": (row.get("FullName") or "").split(".")[-1],
                    "controllingField": value_set.get("controllingField"),
                    "valueSettings": value_set.get("valueSettings") or [],
                    "values": (
                        [v.get("fullName") for v in field_values]
                        if field_values is not None else None
                    ),
                })

        return dependencies

    async def _fetch_validation_rules(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        soql = (
            "SELECT Id, ValidationName, Active, Description, ErrorDisplayField, "
            "ErrorMessage, EntityDefinition.QualifiedApiName FROM ValidationRule"
        )
        if filter.get("object"):
            soql += f" WHERE EntityDefinition.QualifiedApiName = {escape_soql(filter['object'])}"
        soql += " ORDER BY ValidationName"

        rows = await self.query_all(env, soql, tooling=True)
        return [
            {
                "id": rule.get("Id"),
                "name": rule.get("ValidationName"),
                "active": rule.get("Active", False),
                "description": rule.get("Description") or "",
                "errorField": rule.get("ErrorDisplayField") or "",
                "errorMessage": rule.get("ErrorMessage") or "",
                "object": (rule.get("EntityDefinition") or {}).get("QualifiedApiName"),
            }
            for rule in rows
        ]

    async def _fetch_flows(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = await self.query_all(
            env,
            "SELECT Id, ApiName, Label, ProcessType, Status, Description, VersionNumber "
            "FROM FlowDefinitionView ORDER BY ApiName",
            tooling=True,
        )
        return [
            {
                "id": flow.get("Id"),
                "name": flow.get("ApiName"),
                "label": flow.get("Label"),
                "type": flow.get("ProcessType"),
                "status": flow.get("Status"),
                "description": flow.get("Description") or "",
                "version": flow.get("VersionNumber"),
            }
            for flow in rows
        ]

    async def _fetch_profiles(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = await self.query_all(
            env,
            "SELECT Id, Name, UserLicense.Name, UserType, Description FROM Profile ORDER BY Name",
        )
        return [
            {
                "id": profile.get("Id"),
                "name": profile.get("Name"),
                "license": (profile.get("UserLicense") or {}).get("Name", "Unknown"),
                "userType": profile.get("UserType"),
                "description": profile.get("Description") or "",
            }
            for profile in rows
        ]

    async def _fetch_permission_sets(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        soql = (
            "SELECT Id, Name, Label, Description, License.Name, NamespacePrefix "
            "FROM PermissionSet"
        )
        if filter.get("profile_id"):
            soql += f" WHERE ProfileId = {escape_soql(filter['profile_id'])}"
        else:
            soql += " WHERE IsOwnedByProfile = false"
        soql += " ORDER BY Label"

        rows = await self.query_all(env, soql)
        return [
            {
                "id": ps.get("Id"),
                "name": ps.get("Name"),
                "label": ps.get("Label") or ps.get("Name"),
                "description": ps.get("Description") or "",
                "license": (ps.get("License") or {}).get("Name", "None"),
                "namespace": ps.get("NamespacePrefix") or "",
            }
            for ps in rows
        ]

    async def _fetch_object_permissions(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "parent_id")
        rows = await self.query_all(
            env,
            "SELECT Id, SobjectType, PermissionsCreate, PermissionsRead, PermissionsEdit, "
            "PermissionsDelete, PermissionsViewAllRecords, PermissionsModifyAllRecords "
            f"FROM ObjectPermissions WHERE ParentId = {escape_soql(values['parent_id'])} "
            "ORDER BY SobjectType",
        )
        return [
            {
                "object": perm.get("SobjectType"),
                "create": bool(perm.get("PermissionsCreate")),
                "read": bool(perm.get("PermissionsRead")),
                "edit": bool(perm.get("PermissionsEdit")),
                "delete": bool(perm.get("PermissionsDelete")),
                "viewAll": bool(perm.get("PermissionsViewAllRecords")),
                "modifyAll": bool(perm.get("PermissionsModifyAllRecords")),
            }
            for perm in rows
        ]

    async def _fetch_field_permissions(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "parent_id")
        rows = await self.query_all(
            env,
            "SELECT Id, Field, SobjectType, PermissionsRead, PermissionsEdit "
            f"FROM FieldPermissions WHERE ParentId = {escape_soql(values['parent_id'])} "
            "ORDER BY SobjectType, Field",
        )
        return [
            {
                "object": perm.get("SobjectType"),
                # Field is reported as Object.Field
                "field": (perm.get("Field") or "").split(".", 1)[-1],
                "read": bool(perm.get("PermissionsRead")),
                "edit": bool(perm.get("PermissionsEdit")),
            }
            for perm in rows
        ]

    async def _fetch_child_relationships(self, env: EnvironmentHandle, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        values = self.require(filter, "object")
        describe = await self.describe(env, values["object"])
        return [
            {
                "childSObject": rel.get("childSObject"),
                "field": rel.get("field"),
                "relationshipName": rel.get("relationshipName"),
                "cascadeDelete": bool(rel.get("cascadeDelete", False)),
            }
            for rel in describe.get("childRelationships") or []
        ]


def _find_field(describe: Mapping[str, Any], field_name: str) -> Optional[Dict[str, Any]]:
    for field in describe.get("fields") or []:
        if field.get("name") == field_name:
            return field
    return None
