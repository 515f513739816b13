"""
Entity layer of dyndb.

An Entity is the in-memory form of one stored (or not yet stored) object:
an id, an immutable Type linkage, and a bag of attribute values validated
against the catalog. Types and Properties are entities too.

Entities are obtained from the DataStore (new ones and fetched ones). Once
you have an entity you can:
- Read its id, type id, type name and Type entity
- Set values with set_string / set_reference
- Read values with get_string / get_reference / get_reference_id
- Persist or delete it

Invariants:
    - Type linkage never changes after construction
    - At most one value per property; no value means "absent"
    - Ids 1-99 are read-only: setters, persist() and delete() refuse them
    - Stored Type and Property definitions refuse new values
    - Validation happens before any storage call
    - A reference slot is either Unresolved(id) or Resolved(id, entity);
      a missing slot means the property has no value

State machine:
    TRANSIENT --persist--> PERSISTED --delete--> DELETED (terminal)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Tuple, Union

from .errors import (
    InvalidEntityError,
    ProtectedEntityError,
    TypeMismatchError,
)
from .schema.types import (
    FIRST_USER_ID,
    PROPERTY_TYPE_ID,
    TYPE_TYPE_ID,
    UNSAVED_ID,
    PropertyDef,
    is_builtin_id,
)

if TYPE_CHECKING:
    from .schema.catalog import TypeCatalog
    from .store.coordinator import PersistenceCoordinator

logger = logging.getLogger(__name__)


class EntityState(Enum):
    """Lifecycle state of an entity."""

    TRANSIENT = "transient"
    PERSISTED = "persisted"
    DELETED = "deleted"


@dataclass(frozen=True)
class Unresolved:
    """Reference known only by id; fetched on first read."""

    entity_id: int


@dataclass(frozen=True)
class Resolved:
    """Reference with the target entity held in memory."""

    entity_id: int
    entity: Entity


ReferenceSlot = Union[Unresolved, Resolved]


class Entity:
    """One object instance of a catalog Type.

    Attributes:
        id: Object id (0 until first persist)
        type_id: Id of the entity's Type
        type_name: Name of the entity's Type
        state: Lifecycle state

    Example:
        >>> person = store.create_entity("Person")
        >>> person.set_string("FirstName", "Tom")
        >>> person.set_reference("HomeAddress", address)
        >>> person.persist()
        >>> person.id >= 100
        True
    """

    def __init__(
        self,
        catalog: TypeCatalog,
        type_id: int,
        type_name: str,
        coordinator: Optional[PersistenceCoordinator] = None,
        entity_id: int = UNSAVED_ID,
        state: EntityState = EntityState.TRANSIENT,
    ) -> None:
        self._catalog = catalog
        self._coordinator = coordinator
        self._type_id = type_id
        self._type_name = type_name
        self._id = entity_id
        self._state = state
        self._strings: Dict[int, str] = {}
        self._references: Dict[int, ReferenceSlot] = {}
        self._dirty: Set[int] = set()

    # -- identity -----------------------------------------------------------

    @property
    def id(self) -> int:
        return self._id

    @property
    def type_id(self) -> int:
        return self._type_id

    @property
    def type_name(self) -> str:
        return self._type_name

    @property
    def type(self) -> Entity:
        """The Type entity this entity is an instance of (owned by the catalog)."""
        return self._catalog.get_type(self._type_id)

    @property
    def state(self) -> EntityState:
        return self._state

    @property
    def is_type_definition(self) -> bool:
        return self._type_id == TYPE_TYPE_ID

    @property
    def is_property_definition(self) -> bool:
        return self._type_id == PROPERTY_TYPE_ID

    # -- validated access ---------------------------------------------------

    def set_string(self, property_name: str, value: Optional[str]) -> None:
        """Set a string value by property name.

        Args:
            property_name: Name of a String property of this entity's type
            value: The value; None is ignored

        Raises:
            UnknownPropertyError: No such property on this type
            TypeMismatchError: Property is not a String property, or value is not a str
            ProtectedEntityError: Entity is built-in metadata
            InvalidEntityError: Entity is a stored Type or Property definition
        """
        self._check_writable()
        prop = self._lookup(property_name)
        if not prop.data_type.is_primitive:
            raise TypeMismatchError(
                f"Property '{property_name}' of type '{self._type_name}' holds "
                f"'{prop.data_type}' references, not strings"
            )
        if value is None:
            return
        if not isinstance(value, str):
            raise TypeMismatchError(
                f"Property '{property_name}' requires a str, got {type(value).__name__}"
            )

        self._strings[prop.property_id] = value
        self._dirty.add(prop.property_id)

    def set_reference(self, property_name: str, value: Optional[Entity]) -> None:
        """Set a reference value by property name.

        Args:
            property_name: Name of a reference property of this entity's type
            value: A persisted entity of the property's target type; None is ignored

        Raises:
            UnknownPropertyError: No such property on this type
            TypeMismatchError: Property is a String property, or value has the wrong type
            ProtectedEntityError: Entity is built-in metadata
            InvalidEntityError: value has not been persisted yet, or this entity
                is a stored Type or Property definition
        """
        self._check_writable()
        prop = self._lookup(property_name)
        if not prop.data_type.is_reference:
            raise TypeMismatchError(
                f"Property '{property_name}' of type '{self._type_name}' holds strings"
            )
        if value is None:
            return
        if value.type_name != prop.data_type.type_name:
            raise TypeMismatchError(
                f"Property '{property_name}' requires a '{prop.data_type}' entity, "
                f"got '{value.type_name}'"
            )
        if value.id == UNSAVED_ID or value.state is EntityState.DELETED:
            raise InvalidEntityError(
                f"Cannot reference a {value.state.value} '{value.type_name}' entity"
            )

        self._references[prop.property_id] = Resolved(value.id, value)
        self._dirty.add(prop.property_id)

    def get_string(self, property_name: str) -> Optional[str]:
        """Return a string value by property name, or None if absent."""
        prop = self._lookup(property_name)
        if not prop.data_type.is_primitive:
            raise TypeMismatchError(
                f"Property '{property_name}' of type '{self._type_name}' holds references"
            )
        return self._strings.get(prop.property_id)

    def get_reference_id(self, property_name: str) -> Optional[int]:
        """Return the referenced entity id without fetching it."""
        prop = self._reference_property(property_name)
        slot = self._references.get(prop.property_id)
        return slot.entity_id if slot is not None else None

    def get_reference(self, property_name: str) -> Optional[Entity]:
        """Return the referenced entity, fetching it on first access.

        A fetched target is cached on this entity for later reads. If the
        target no longer exists, None is returned and nothing is cached.
        """
        prop = self._reference_property(property_name)
        slot = self._references.get(prop.property_id)
        if slot is None:
            return None
        if isinstance(slot, Resolved):
            return slot.entity

        target = self._require_coordinator().fetch_by_id(slot.entity_id)
        if target is not None:
            self._references[prop.property_id] = Resolved(slot.entity_id, target)
        return target

    def is_modified(self, property_name: str) -> bool:
        """Whether a property was set since construction or the last persist."""
        return self._lookup(property_name).property_id in self._dirty

    # -- lifecycle ----------------------------------------------------------

    def persist(self) -> None:
        """Insert or update this entity.

        Type and Property entities are registered in the catalog once stored,
        so they can validate entities created afterwards.

        Raises:
            ProtectedEntityError: Entity is built-in metadata
            InvalidEntityError: Entity was deleted, or a definition is incomplete
            InvalidDataTypeError: A Property's data type is not valid
            StorageFailure: The database rejected a statement
        """
        if is_builtin_id(self._id):
            raise ProtectedEntityError(
                f"Attempt to persist built-in type or property (id={self._id})", self._id
            )
        if self._state is EntityState.DELETED:
            raise InvalidEntityError(f"Cannot persist deleted entity {self._id}")

        coordinator = self._require_coordinator()
        if self.is_type_definition or self.is_property_definition:
            self._catalog.check_definition(self)

        if self._state is EntityState.TRANSIENT:
            coordinator.insert(self)
        else:
            coordinator.update(self)

        logger.debug(
            "Persisted entity",
            extra={
                "entity_id": self._id,
                "type_name": self._type_name,
                "modified": len(self._dirty),
            },
        )
        self._state = EntityState.PERSISTED
        self._dirty.clear()

        if self.is_type_definition:
            self._catalog.register_type(self)
        elif self.is_property_definition:
            self._catalog.register_property(self)

    def delete(self) -> None:
        """Delete this entity and all of its attribute rows.

        Raises:
            ProtectedEntityError: Entity is built-in metadata or was never stored
            InvalidEntityError: Entity was already deleted
            StorageFailure: The database rejected a statement
        """
        if self._id < FIRST_USER_ID:
            raise ProtectedEntityError(
                f"Attempt to delete built-in or unsaved entity (id={self._id})", self._id
            )
        if self._state is EntityState.DELETED:
            raise InvalidEntityError(f"Entity {self._id} is already deleted")

        self._require_coordinator().delete(self)
        self._state = EntityState.DELETED
        logger.debug(
            "Deleted entity",
            extra={"entity_id": self._id, "type_name": self._type_name},
        )

        if self.is_type_definition or self.is_property_definition:
            self._catalog.unregister(self)

    # -- raw access for the catalog and coordinator -------------------------

    def string_items(self) -> List[Tuple[int, str]]:
        """(property id, value) pairs of all set string values."""
        return list(self._strings.items())

    def reference_items(self) -> List[Tuple[int, int]]:
        """(property id, target id) pairs of all set references."""
        return [(pid, slot.entity_id) for pid, slot in self._references.items()]

    def string_value(self, property_id: int) -> Optional[str]:
        return self._strings.get(property_id)

    def reference_value(self, property_id: int) -> Optional[int]:
        slot = self._references.get(property_id)
        return slot.entity_id if slot is not None else None

    def reference_slot(self, property_id: int) -> Optional[ReferenceSlot]:
        return self._references.get(property_id)

    def is_dirty(self, property_id: int) -> bool:
        return property_id in self._dirty

    def load_string(self, property_id: int, value: str) -> None:
        """Record a stored string value without marking it modified."""
        self._strings[property_id] = value

    def load_reference(
        self, property_id: int, value_id: int, target: Optional[Entity] = None
    ) -> None:
        """Record a stored reference without marking it modified."""
        if target is None:
            self._references[property_id] = Unresolved(value_id)
        else:
            self._references[property_id] = Resolved(value_id, target)

    def assign_id(self, entity_id: int) -> None:
        """Set the identity issued on first insert."""
        if self._id != UNSAVED_ID:
            raise InvalidEntityError(f"Entity already has id {self._id}")
        self._id = entity_id

    # -- helpers ------------------------------------------------------------

    def values(self) -> Dict[str, Any]:
        """Snapshot of set values keyed by property name (references as ids)."""
        result: Dict[str, Any] = {}
        for pid, value in self._strings.items():
            result[self._catalog.property_name(self._type_id, pid)] = value
        for pid, slot in self._references.items():
            result[self._catalog.property_name(self._type_id, pid)] = slot.entity_id
        return result

    def _lookup(self, property_name: str) -> PropertyDef:
        return self._catalog.lookup_property(self._type_id, property_name)

    def _reference_property(self, property_name: str) -> PropertyDef:
        prop = self._lookup(property_name)
        if not prop.data_type.is_reference:
            raise TypeMismatchError(
                f"Property '{property_name}' of type '{self._type_name}' holds strings"
            )
        return prop

    def _check_writable(self) -> None:
        if is_builtin_id(self._id):
            raise ProtectedEntityError(
                f"Attempt to modify built-in type or property (id={self._id})", self._id
            )
        if self._state is EntityState.PERSISTED and (
            self.is_type_definition or self.is_property_definition
        ):
            raise InvalidEntityError(
                f"Stored {self._type_name} definition {self._id} cannot be modified"
            )

    def _require_coordinator(self) -> PersistenceCoordinator:
        if self._coordinator is None:
            raise InvalidEntityError(
                f"'{self._type_name}' entity is not attached to a data store"
            )
        return self._coordinator

    def __repr__(self) -> str:
        return (
            f"Entity(type={self._type_name!r}, id={self._id}, "
            f"state={self._state.value}, values={self.values()!r})"
        )
