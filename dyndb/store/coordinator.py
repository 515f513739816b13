"""
Persistence coordinator for dyndb.

Translates entity operations into statements against the generic
attribute tables:
- insert: one identity row plus one attribute row per set property
- update: upsert of each modified property's single attribute row
- delete: attribute rows first, then the identity row
- fetch_by_id: identity row, then attribute rows of one object
- fetch_by_key: conjunctive equality match over any number of properties

Invariants:
    - The attribute table of a value follows from the property's DataType,
      resolved once by the catalog
    - Key lookups return entities in ascending id order
    - Entities built here are PERSISTED and carry no modified flags

Example:
    >>> coordinator = PersistenceCoordinator(gateway, catalog)
    >>> template = Entity(catalog, person_type.id, "Person", coordinator)
    >>> template.set_string("FirstName", "Tom")
    >>> [p.id for p in coordinator.fetch_by_key(template)]
    [104]
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from ..config import DynDbSettings
from ..entity import Entity, EntityState
from ..errors import UnknownTypeError

if TYPE_CHECKING:
    from ..schema.catalog import TypeCatalog
    from .gateway import SqliteGateway

logger = logging.getLogger(__name__)


class PersistenceCoordinator:
    """Builds and runs the statements behind entity persistence and fetch."""

    def __init__(
        self,
        gateway: SqliteGateway,
        catalog: TypeCatalog,
        settings: Optional[DynDbSettings] = None,
    ) -> None:
        self.gateway = gateway
        self.catalog = catalog
        self.settings = settings or gateway.settings

    # -- writes -------------------------------------------------------------

    def insert(self, entity: Entity) -> int:
        """Store a new entity and assign its id.

        Returns:
            The issued object id
        """
        object_id = self.gateway.next_id()
        self.gateway.execute(
            "INSERT INTO objects (object_id, type_id) VALUES (?, ?)",
            (object_id, entity.type_id),
        )
        strings = entity.string_items()
        for property_id, value in strings:
            self.gateway.execute(
                "INSERT INTO value_string (object_id, property_id, value) VALUES (?, ?, ?)",
                (object_id, property_id, value),
            )
        references = entity.reference_items()
        for property_id, value_id in references:
            self.gateway.execute(
                "INSERT INTO value_reference (object_id, property_id, value_id) "
                "VALUES (?, ?, ?)",
                (object_id, property_id, value_id),
            )

        entity.assign_id(object_id)
        logger.debug(
            "Inserted entity",
            extra={
                "entity_id": object_id,
                "type_id": entity.type_id,
                "strings": len(strings),
                "references": len(references),
            },
        )
        return object_id

    def update(self, entity: Entity) -> int:
        """Write the modified properties of a stored entity.

        Returns:
            Number of attribute rows written
        """
        written = 0
        for property_id, value in entity.string_items():
            if entity.is_dirty(property_id):
                self.gateway.execute(
                    "INSERT INTO value_string (object_id, property_id, value) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT (object_id, property_id) DO UPDATE SET value = excluded.value",
                    (entity.id, property_id, value),
                )
                written += 1
        for property_id, value_id in entity.reference_items():
            if entity.is_dirty(property_id):
                self.gateway.execute(
                    "INSERT INTO value_reference (object_id, property_id, value_id) "
                    "VALUES (?, ?, ?) "
                    "ON CONFLICT (object_id, property_id) "
                    "DO UPDATE SET value_id = excluded.value_id",
                    (entity.id, property_id, value_id),
                )
                written += 1

        logger.debug(
            "Updated entity",
            extra={"entity_id": entity.id, "type_id": entity.type_id, "rows": written},
        )
        return written

    def delete(self, entity: Entity) -> None:
        """Remove an entity's attribute rows and identity row."""
        self.gateway.execute("DELETE FROM value_string WHERE object_id = ?", (entity.id,))
        self.gateway.execute("DELETE FROM value_reference WHERE object_id = ?", (entity.id,))
        self.gateway.execute("DELETE FROM objects WHERE object_id = ?", (entity.id,))
        logger.debug(
            "Deleted entity rows",
            extra={"entity_id": entity.id, "type_id": entity.type_id},
        )

    # -- reads --------------------------------------------------------------

    def fetch_by_id(self, object_id: int) -> Optional[Entity]:
        """Reconstruct a stored entity by id.

        Returns:
            The entity, or None if no object has this id

        Raises:
            UnknownTypeError: The object's type is not in the catalog
        """
        row = self.gateway.query_one(
            "SELECT type_id FROM objects WHERE object_id = ?", (object_id,)
        )
        if row is None:
            logger.debug("Object not found", extra={"entity_id": object_id})
            return None

        type_id = row["type_id"]
        if self.catalog.find_type(type_id) is None:
            raise UnknownTypeError(type_id)

        entities = self._load([object_id], type_id, self.catalog.type_name(type_id))
        logger.debug(
            "Fetched entity by id",
            extra={"entity_id": object_id, "type_id": type_id},
        )
        return entities[0]

    def fetch_by_key(self, template: Entity) -> List[Entity]:
        """Find every stored entity of the template's type matching all of
        its set values.

        A template with no values matches every entity of its type.

        Args:
            template: Entity whose set properties form the key

        Returns:
            Matching entities in ascending id order
        """
        sql, params = self._key_query(template)
        ids = [row["object_id"] for row in self.gateway.query(sql, params)]

        entities = self._load(ids, template.type_id, template.type_name) if ids else []
        logger.debug(
            "Fetched entities by key",
            extra={
                "type_id": template.type_id,
                "key": template.values(),
                "matches": len(entities),
            },
        )
        return entities

    # -- internals ----------------------------------------------------------

    @staticmethod
    def _key_query(template: Entity) -> Tuple[str, List[object]]:
        joins: List[str] = []
        params: List[object] = []
        alias = 0

        for property_id, value in template.string_items():
            alias += 1
            joins.append(
                f"JOIN value_string p{alias} ON p{alias}.object_id = o.object_id "
                f"AND p{alias}.property_id = ? AND p{alias}.value = ?"
            )
            params.extend((property_id, value))

        for property_id, value_id in template.reference_items():
            alias += 1
            joins.append(
                f"JOIN value_reference p{alias} ON p{alias}.object_id = o.object_id "
                f"AND p{alias}.property_id = ? AND p{alias}.value_id = ?"
            )
            params.extend((property_id, value_id))

        sql = " ".join(
            ["SELECT o.object_id FROM objects o", *joins, "WHERE o.type_id = ?", "ORDER BY o.object_id"]
        )
        params.append(template.type_id)
        return sql, params

    def _load(self, ids: Sequence[int], type_id: int, type_name: str) -> List[Entity]:
        """Build PERSISTED entities for ids from their attribute rows."""
        entities: Dict[int, Entity] = {}

        def entity_for(object_id: int) -> Entity:
            entity = entities.get(object_id)
            if entity is None:
                entity = Entity(
                    self.catalog,
                    type_id,
                    type_name,
                    self,
                    entity_id=object_id,
                    state=EntityState.PERSISTED,
                )
                entities[object_id] = entity
            return entity

        batch_size = self.settings.fetch_batch_size
        for start in range(0, len(ids), batch_size):
            batch = list(ids[start : start + batch_size])
            placeholders = ", ".join("?" for _ in batch)

            for row in self.gateway.query(
                "SELECT object_id, property_id, value FROM value_string "
                f"WHERE object_id IN ({placeholders})",
                batch,
            ):
                entity_for(row["object_id"]).load_string(row["property_id"], row["value"])

            for row in self.gateway.query(
                "SELECT object_id, property_id, value_id FROM value_reference "
                f"WHERE object_id IN ({placeholders})",
                batch,
            ):
                entity_for(row["object_id"]).load_reference(
                    row["property_id"], row["value_id"]
                )

        return [entity_for(object_id) for object_id in ids]
