"""
Data store session for dyndb.

A DataStore is the entry point for applications. It owns one storage
connection, the type catalog and the persistence coordinator, and offers:
- Runtime definition of Types and Properties
- Creation of new entities and of key templates
- Fetch by id and by key
- Explicit commit/rollback of the ambient transaction
- Reset of all stored data to the bootstrap state

Invariants:
    - One connection and one catalog per session
    - The catalog is built at open and changes only through persist/delete
      of Type and Property entities (or reset)
    - Every operation after close() raises ClosedSessionError

Example:
    >>> with DataStore.open(DynDbSettings(database=":memory:")) as store:
    ...     address = store.create_type("Address")
    ...     store.create_property(address, "Street", "String")
    ...     home = store.create_entity("Address")
    ...     home.set_string("Street", "4 Depot Street")
    ...     home.persist()
    ...     store.commit()
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from .config import DynDbSettings
from .entity import Entity
from .errors import ClosedSessionError, UnknownTypeError
from .schema.catalog import TypeCatalog
from .schema.types import (
    PROPERTY_NAME_PROPERTY,
    PROPERTY_OWNER_PROPERTY,
    PROPERTY_TYPE_ID,
    PROPERTY_TYPE_NAME,
    PROPERTY_TYPE_PROPERTY,
    TYPE_NAME_PROPERTY,
    TYPE_TYPE_ID,
    TYPE_TYPE_NAME,
    PropertyInfo,
)
from .store.coordinator import PersistenceCoordinator
from .store.gateway import SqliteGateway

logger = logging.getLogger(__name__)


class DataStore:
    """Session over one dyndb database.

    Use DataStore.open() rather than the constructor.

    Attributes:
        settings: Effective settings
        catalog: Type catalog of this session
    """

    def __init__(
        self,
        gateway: SqliteGateway,
        catalog: TypeCatalog,
        coordinator: PersistenceCoordinator,
        settings: DynDbSettings,
    ) -> None:
        self._gateway = gateway
        self._coordinator = coordinator
        self.catalog = catalog
        self.settings = settings
        self._closed = False

    @classmethod
    def open(
        cls,
        settings: Optional[DynDbSettings] = None,
        reset: Optional[bool] = None,
    ) -> DataStore:
        """Open a session: connect, optionally reset, build the catalog.

        Args:
            settings: Settings to use (default: read from the environment)
            reset: Reset stored data first (default: settings.reset_on_open)

        Raises:
            StorageFailure: The database could not be opened or read
        """
        settings = settings or DynDbSettings()
        if reset is None:
            reset = settings.reset_on_open

        gateway = SqliteGateway.connect(settings)
        catalog = TypeCatalog()
        coordinator = PersistenceCoordinator(gateway, catalog, settings)
        store = cls(gateway, catalog, coordinator, settings)

        try:
            if reset:
                gateway.reset()
            store._build_catalog()
        except Exception:
            gateway.close()
            raise

        logger.info(
            f"Opened dyndb data store: {settings.database}",
            extra={"types": len(catalog.type_names()), "reset": reset},
        )
        return store

    def _build_catalog(self) -> None:
        self.catalog.bootstrap(self._coordinator)
        self.catalog.load_user_defined(self._coordinator)

    # -- definitions --------------------------------------------------------

    def create_type(self, name: str) -> Entity:
        """Define and persist a new Type.

        Raises:
            InvalidEntityError: Name empty or already used
        """
        self._ensure_open()
        type_entity = self._new_entity(TYPE_TYPE_ID, TYPE_TYPE_NAME)
        type_entity.set_string(TYPE_NAME_PROPERTY, name)
        type_entity.persist()
        return type_entity

    def create_property(
        self, type_entity: Union[Entity, str], name: str, data_type: str
    ) -> Entity:
        """Define and persist a new Property on a Type.

        Args:
            type_entity: Owning Type entity, or its name
            name: Property name, unique within the type
            data_type: "String" or the name of a registered Type

        Raises:
            UnknownTypeError: Owner type is not registered
            InvalidDataTypeError: data_type is not valid
            InvalidEntityError: Name empty or already used on the type
        """
        self._ensure_open()
        if isinstance(type_entity, str):
            type_entity = self.catalog.get_type(type_entity)

        property_entity = self._new_entity(PROPERTY_TYPE_ID, PROPERTY_TYPE_NAME)
        property_entity.set_reference(PROPERTY_OWNER_PROPERTY, type_entity)
        property_entity.set_string(PROPERTY_NAME_PROPERTY, name)
        property_entity.set_string(PROPERTY_TYPE_PROPERTY, data_type)
        property_entity.persist()
        return property_entity

    # -- entities -----------------------------------------------------------

    def create_entity(self, type_name: str) -> Entity:
        """Create a transient entity of a registered type.

        The result is persisted with persist(), or used as a key template
        for fetch_by_key().

        Raises:
            UnknownTypeError: No such type
        """
        self._ensure_open()
        type_entity = self.catalog.get_type(type_name)
        return self._new_entity(type_entity.id, self.catalog.type_name(type_entity.id))

    def fetch_by_key(self, template: Entity) -> List[Entity]:
        """Find entities of the template's type matching all of its set values.

        Returns:
            Matches in ascending id order (all entities of the type if the
            template has no values)
        """
        self._ensure_open()
        if self.catalog.find_type(template.type_id) is None:
            raise UnknownTypeError(template.type_id)
        return self._coordinator.fetch_by_key(template)

    def fetch_by_id(self, entity_id: int) -> Optional[Entity]:
        """Fetch one entity by id, or None if it does not exist."""
        self._ensure_open()
        return self._coordinator.fetch_by_id(entity_id)

    # -- transactions -------------------------------------------------------

    def commit(self) -> None:
        self._ensure_open()
        self._gateway.commit()

    def rollback(self) -> None:
        """Roll back storage changes since the last commit.

        In-memory entities and the catalog are not reverted.
        """
        self._ensure_open()
        self._gateway.rollback()

    def reset(self) -> None:
        """Drop all stored data and rebuild the catalog from bootstrap rows.

        Entities obtained before the reset must not be used afterwards.
        """
        self._ensure_open()
        self._gateway.reset()
        self._build_catalog()

    # -- introspection ------------------------------------------------------

    def type_names(self) -> List[str]:
        self._ensure_open()
        return self.catalog.type_names()

    def properties_for_type(self, type_name: str) -> List[PropertyInfo]:
        self._ensure_open()
        return self.catalog.properties_for_type(type_name)

    def dump(self) -> Dict[str, List[tuple]]:
        """Rows of the identity and attribute tables, for diagnostics."""
        self._ensure_open()
        return self._gateway.dump()

    # -- lifecycle ----------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close the session. Uncommitted changes are discarded.

        Raises:
            ClosedSessionError: Already closed
        """
        self._ensure_open()
        self._closed = True
        self._gateway.close()

    def __enter__(self) -> DataStore:
        self._ensure_open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._closed:
            self.close()

    def _new_entity(self, type_id: int, type_name: str) -> Entity:
        return Entity(self.catalog, type_id, type_name, self._coordinator)

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedSessionError()
