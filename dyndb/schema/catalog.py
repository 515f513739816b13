"""
Type catalog for dyndb.

The TypeCatalog is the in-memory index of every known Type and Property
entity. It provides:
- The circular bootstrap of the built-in Type and Property types
- Registration of Type/Property entities as they are persisted
- Property lookup by name or id, with suggestions on a miss
- Data type validation and resolution
- Loading of user-defined types from storage at session start

Invariants:
    - Bootstrap is a fixed sequence; each step fully registers one entity
      before the next step (which may depend on it) runs
    - A Property is registered only after its owner Type
    - A Property's data type is resolved once, at registration
    - The catalog never creates entries on a lookup miss
    - The catalog is the sole owner of the bootstrap entities

How to change safely:
    - Keep bootstrap ids/names in sync with the storage reset script
    - Stored Type/Property definitions are immutable (no schema migration)

Example:
    >>> catalog = TypeCatalog()
    >>> catalog.bootstrap()
    >>> catalog.type_names()
    ['Type', 'Property']
    >>> catalog.validate_data_type("Type")
    True
"""

from __future__ import annotations

import logging
from difflib import get_close_matches
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Union

from ..entity import Entity, EntityState
from ..errors import (
    InvalidDataTypeError,
    InvalidEntityError,
    UnknownPropertyError,
    UnknownTypeError,
)
from .types import (
    DATATYPE_STRING,
    FIRST_USER_ID,
    PROPERTY_NAME_PROPERTY,
    PROPERTY_NAME_PROPERTY_ID,
    PROPERTY_OWNER_PROPERTY,
    PROPERTY_OWNER_PROPERTY_ID,
    PROPERTY_TYPE_ID,
    PROPERTY_TYPE_NAME,
    PROPERTY_TYPE_PROPERTY,
    PROPERTY_TYPE_PROPERTY_ID,
    TYPE_NAME_PROPERTY,
    TYPE_NAME_PROPERTY_ID,
    TYPE_TYPE_ID,
    TYPE_TYPE_NAME,
    DataType,
    PropertyDef,
    PropertyInfo,
)

if TYPE_CHECKING:
    from ..store.coordinator import PersistenceCoordinator

logger = logging.getLogger(__name__)


class TypeCatalog:
    """Index of Type and Property entities.

    Types are indexed by id and name; properties are kept per owning type
    as an ordered list plus name- and id-keyed maps.

    Example:
        >>> catalog = TypeCatalog()
        >>> catalog.bootstrap(coordinator)
        >>> catalog.load_user_defined(coordinator)
        >>> catalog.lookup_property(TYPE_TYPE_ID, "Name").property_id
        5
    """

    def __init__(self) -> None:
        """Initialize an empty catalog."""
        self._types: Dict[int, Entity] = {}
        self._types_by_name: Dict[str, Entity] = {}
        self._type_names: Dict[int, str] = {}
        self._properties: Dict[int, List[PropertyDef]] = {}
        self._properties_by_name: Dict[int, Dict[str, PropertyDef]] = {}
        self._properties_by_id: Dict[int, Dict[int, PropertyDef]] = {}
        self._property_owners: Dict[int, int] = {}

    def clear(self) -> None:
        """Drop every entry, including the built-in ones."""
        self._types.clear()
        self._types_by_name.clear()
        self._type_names.clear()
        self._properties.clear()
        self._properties_by_name.clear()
        self._properties_by_id.clear()
        self._property_owners.clear()

    # -- bootstrap ----------------------------------------------------------

    def bootstrap(self, coordinator: Optional[PersistenceCoordinator] = None) -> None:
        """Build the built-in Type and Property metadata.

        Type has a Name property owned by Type, and Property has an Owner
        property that references Type, so neither can be validated by the
        other. The sequence below creates bare Type shells first and then
        attaches properties, one fully registered entity per step.

        Args:
            coordinator: Coordinator attached to the built-in entities
                (None for a catalog without storage)
        """
        self.clear()

        type_type = self._bootstrap_type(TYPE_TYPE_ID, TYPE_TYPE_NAME, coordinator)
        property_type = self._bootstrap_type(PROPERTY_TYPE_ID, PROPERTY_TYPE_NAME, coordinator)

        self._bootstrap_property(
            type_type, TYPE_NAME_PROPERTY_ID, TYPE_NAME_PROPERTY, DATATYPE_STRING, coordinator
        )
        self._bootstrap_property(
            property_type,
            PROPERTY_OWNER_PROPERTY_ID,
            PROPERTY_OWNER_PROPERTY,
            TYPE_TYPE_NAME,
            coordinator,
        )
        self._bootstrap_property(
            property_type,
            PROPERTY_NAME_PROPERTY_ID,
            PROPERTY_NAME_PROPERTY,
            DATATYPE_STRING,
            coordinator,
        )
        self._bootstrap_property(
            property_type,
            PROPERTY_TYPE_PROPERTY_ID,
            PROPERTY_TYPE_PROPERTY,
            DATATYPE_STRING,
            coordinator,
        )

        logger.debug(
            "Bootstrapped type catalog",
            extra={"types": len(self._types), "properties": len(self._property_owners)},
        )

    def _bootstrap_type(
        self,
        type_id: int,
        type_name: str,
        coordinator: Optional[PersistenceCoordinator],
    ) -> Entity:
        # The Type type is its own type; its name is supplied directly since
        # the Type type is not registered yet when it is built.
        type_entity = Entity(
            self,
            TYPE_TYPE_ID,
            TYPE_TYPE_NAME,
            coordinator,
            entity_id=type_id,
            state=EntityState.PERSISTED,
        )
        type_entity.load_string(TYPE_NAME_PROPERTY_ID, type_name)
        self._index_type(type_entity, type_name)
        return type_entity

    def _bootstrap_property(
        self,
        owner: Entity,
        property_id: int,
        property_name: str,
        data_type_name: str,
        coordinator: Optional[PersistenceCoordinator],
    ) -> Entity:
        property_entity = Entity(
            self,
            PROPERTY_TYPE_ID,
            PROPERTY_TYPE_NAME,
            coordinator,
            entity_id=property_id,
            state=EntityState.PERSISTED,
        )
        property_entity.load_reference(PROPERTY_OWNER_PROPERTY_ID, owner.id, owner)
        property_entity.load_string(PROPERTY_NAME_PROPERTY_ID, property_name)
        property_entity.load_string(PROPERTY_TYPE_PROPERTY_ID, data_type_name)

        self._index_property(
            PropertyDef(
                property_id=property_id,
                name=property_name,
                owner_id=owner.id,
                data_type=self._resolve_data_type(data_type_name),
                entity=property_entity,
            )
        )
        return property_entity

    # -- registration -------------------------------------------------------

    def register_type(self, type_entity: Entity) -> None:
        """Index a persisted Type entity.

        Raises:
            InvalidEntityError: Name missing or already used by another type
        """
        name = type_entity.string_value(TYPE_NAME_PROPERTY_ID)
        if not name:
            raise InvalidEntityError(f"Type {type_entity.id} has no name")

        existing = self._types_by_name.get(name)
        if existing is not None and existing.id != type_entity.id:
            raise InvalidEntityError(
                f"Type name '{name}' already registered with id {existing.id}"
            )

        self._index_type(type_entity, name)
        logger.debug(f"Registered type: {name} (id={type_entity.id})")

    def register_property(self, property_entity: Entity) -> None:
        """Index a persisted Property entity.

        Raises:
            UnknownTypeError: Owner type is not registered
            InvalidDataTypeError: Data type is neither String nor a registered type
            InvalidEntityError: Owner or name missing, or name taken on the owner
        """
        owner_id = property_entity.reference_value(PROPERTY_OWNER_PROPERTY_ID)
        if owner_id is None:
            raise InvalidEntityError(f"Property {property_entity.id} has no owner")
        if owner_id not in self._types:
            raise UnknownTypeError(owner_id)

        name = property_entity.string_value(PROPERTY_NAME_PROPERTY_ID)
        if not name:
            raise InvalidEntityError(f"Property {property_entity.id} has no name")

        existing = self._properties_by_name.get(owner_id, {}).get(name)
        if existing is not None and existing.property_id != property_entity.id:
            raise InvalidEntityError(
                f"Property '{name}' already defined on type '{self._type_names[owner_id]}'"
            )

        data_type = self._resolve_data_type(
            property_entity.string_value(PROPERTY_TYPE_PROPERTY_ID)
        )

        self._index_property(
            PropertyDef(
                property_id=property_entity.id,
                name=name,
                owner_id=owner_id,
                data_type=data_type,
                entity=property_entity,
            )
        )
        logger.debug(
            f"Registered property: {self._type_names[owner_id]}.{name} "
            f"(id={property_entity.id}, data_type={data_type})"
        )

    def unregister(self, entity: Entity) -> None:
        """Remove a deleted Type or Property entity from the indexes."""
        if entity.is_type_definition:
            name = self._type_names.pop(entity.id, None)
            self._types.pop(entity.id, None)
            if name is not None:
                self._types_by_name.pop(name, None)
            for prop in self._properties.pop(entity.id, []):
                self._property_owners.pop(prop.property_id, None)
            self._properties_by_name.pop(entity.id, None)
            self._properties_by_id.pop(entity.id, None)
        elif entity.is_property_definition:
            self._unindex_property(entity.id)

    def check_definition(self, entity: Entity) -> None:
        """Validate a Type or Property entity before it is written.

        Stored definitions are not checked again; their setters refuse
        changes since the storage layout has no migration path for a renamed
        type or a retyped property.

        Raises:
            InvalidEntityError: Definition incomplete or duplicated
            UnknownTypeError: Property owner is not registered
            InvalidDataTypeError: Property data type is not valid
        """
        if entity.state is not EntityState.TRANSIENT:
            return

        if entity.is_type_definition:
            name = entity.string_value(TYPE_NAME_PROPERTY_ID)
            if not name:
                raise InvalidEntityError("Type definition requires a Name")
            if name in self._types_by_name:
                raise InvalidEntityError(f"Type '{name}' already exists")

        elif entity.is_property_definition:
            owner_id = entity.reference_value(PROPERTY_OWNER_PROPERTY_ID)
            if owner_id is None:
                raise InvalidEntityError("Property definition requires an Owner")
            if owner_id not in self._types:
                raise UnknownTypeError(owner_id)

            name = entity.string_value(PROPERTY_NAME_PROPERTY_ID)
            if not name:
                raise InvalidEntityError("Property definition requires a Name")
            if name in self._properties_by_name.get(owner_id, {}):
                raise InvalidEntityError(
                    f"Property '{name}' already defined on type '{self._type_names[owner_id]}'"
                )

            data_type = entity.string_value(PROPERTY_TYPE_PROPERTY_ID)
            if data_type is None or not self.validate_data_type(data_type):
                raise InvalidDataTypeError(data_type)

    def load_user_defined(self, coordinator: PersistenceCoordinator) -> None:
        """Register stored user-defined Types, then their Properties.

        Types go first because Property registration needs the owner and
        the data type to be registered already.
        """
        type_key = Entity(self, TYPE_TYPE_ID, TYPE_TYPE_NAME, coordinator)
        type_count = 0
        for type_entity in coordinator.fetch_by_key(type_key):
            if type_entity.id >= FIRST_USER_ID:
                self.register_type(type_entity)
                type_count += 1

        property_key = Entity(self, PROPERTY_TYPE_ID, PROPERTY_TYPE_NAME, coordinator)
        property_count = 0
        for property_entity in coordinator.fetch_by_key(property_key):
            if property_entity.id >= FIRST_USER_ID:
                self.register_property(property_entity)
                property_count += 1

        logger.info(
            f"Loaded {type_count} user-defined types and {property_count} properties"
        )

    # -- lookup -------------------------------------------------------------

    def find_type(self, type_ref: Union[int, str]) -> Optional[Entity]:
        """Get a Type entity by id or name, or None."""
        if isinstance(type_ref, int):
            return self._types.get(type_ref)
        return self._types_by_name.get(type_ref)

    def get_type(self, type_ref: Union[int, str]) -> Entity:
        """Get a Type entity by id or name.

        Raises:
            UnknownTypeError: No such type
        """
        type_entity = self.find_type(type_ref)
        if type_entity is None:
            raise UnknownTypeError(type_ref)
        return type_entity

    def type_name(self, type_id: int) -> str:
        """Name of a registered type id."""
        try:
            return self._type_names[type_id]
        except KeyError:
            raise UnknownTypeError(type_id) from None

    def types(self) -> Iterator[Entity]:
        """Iterate over registered Type entities in registration order."""
        yield from self._types.values()

    def type_names(self) -> List[str]:
        """Names of all registered types."""
        return list(self._type_names.values())

    def lookup_property(self, type_id: int, property_name: str) -> PropertyDef:
        """Get a property of a type by name.

        Raises:
            UnknownPropertyError: No such property on the type
        """
        by_name = self._properties_by_name.get(type_id, {})
        prop = by_name.get(property_name)
        if prop is None:
            suggestions = get_close_matches(property_name, list(by_name), n=3)
            raise UnknownPropertyError(
                property_name, self._type_names.get(type_id, str(type_id)), suggestions
            )
        return prop

    def lookup_property_by_id(self, type_id: int, property_id: int) -> PropertyDef:
        """Get a property of a type by id.

        Raises:
            UnknownPropertyError: No such property on the type
        """
        prop = self._properties_by_id.get(type_id, {}).get(property_id)
        if prop is None:
            raise UnknownPropertyError(property_id, self._type_names.get(type_id, str(type_id)))
        return prop

    def property_name(self, type_id: int, property_id: int) -> str:
        """Name of a property, or its id as text if unknown."""
        prop = self._properties_by_id.get(type_id, {}).get(property_id)
        return prop.name if prop is not None else str(property_id)

    def properties(self, type_id: int) -> List[PropertyDef]:
        """Properties of a type in declaration order."""
        return list(self._properties.get(type_id, []))

    def properties_for_type(self, type_name: str) -> List[PropertyInfo]:
        """Name and data type of each property of a type.

        Raises:
            UnknownTypeError: No such type
        """
        type_entity = self.get_type(type_name)
        return [prop.info() for prop in self.properties(type_entity.id)]

    def validate_data_type(self, data_type: str) -> bool:
        """Whether a data type is "String" or a registered type name."""
        return data_type == DATATYPE_STRING or data_type in self._types_by_name

    def to_dict(self) -> dict:
        """Convert the catalog to a dictionary, sorted by id."""
        return {
            "types": [
                {
                    "type_id": type_id,
                    "name": self._type_names[type_id],
                    "properties": [prop.to_dict() for prop in self.properties(type_id)],
                }
                for type_id in sorted(self._types)
            ]
        }

    # -- internals ----------------------------------------------------------

    def _resolve_data_type(self, data_type: Optional[str]) -> DataType:
        if data_type == DATATYPE_STRING:
            return DataType.primitive()
        target = self._types_by_name.get(data_type) if data_type else None
        if target is None:
            raise InvalidDataTypeError(data_type)
        return DataType.reference(target.id, data_type)

    def _index_type(self, type_entity: Entity, name: str) -> None:
        self._types[type_entity.id] = type_entity
        self._types_by_name[name] = type_entity
        self._type_names[type_entity.id] = name

    def _index_property(self, prop: PropertyDef) -> None:
        if prop.property_id in self._property_owners:
            self._unindex_property(prop.property_id)

        self._properties.setdefault(prop.owner_id, []).append(prop)
        self._properties_by_name.setdefault(prop.owner_id, {})[prop.name] = prop
        self._properties_by_id.setdefault(prop.owner_id, {})[prop.property_id] = prop
        self._property_owners[prop.property_id] = prop.owner_id

    def _unindex_property(self, property_id: int) -> None:
        owner_id = self._property_owners.pop(property_id, None)
        if owner_id is None:
            return
        prop = self._properties_by_id[owner_id].pop(property_id)
        self._properties_by_name[owner_id].pop(prop.name, None)
        self._properties[owner_id] = [
            p for p in self._properties[owner_id] if p.property_id != property_id
        ]
