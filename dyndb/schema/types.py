"""
Core type definitions for the dyndb type system.

The type system is itself stored as data: every Type and Property is an
entity of one of two built-in types. This module holds the fixed ids and
names of that built-in metadata plus the small value types the catalog
hands out:
- DataKind / DataType: resolved data type of a property (String or reference)
- PropertyDef: catalog view of one registered Property entity
- PropertyInfo: public (name, data type) pair

Invariants:
    - Ids 1-99 are reserved for built-in metadata, 0 means "not persisted"
    - A DataType is resolved once, when its Property is registered
    - Names are labels only; ids are canonical

Example:
    >>> DataType.primitive().is_primitive
    True
    >>> DataType.reference(101, "Address").type_name
    'Address'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..entity import Entity

# Built-in Type entities
TYPE_TYPE_ID = 1
TYPE_TYPE_NAME = "Type"
PROPERTY_TYPE_ID = 2
PROPERTY_TYPE_NAME = "Property"

# Built-in properties of Type
TYPE_NAME_PROPERTY_ID = 5
TYPE_NAME_PROPERTY = "Name"

# Built-in properties of Property
PROPERTY_OWNER_PROPERTY_ID = 6
PROPERTY_OWNER_PROPERTY = "Owner"
PROPERTY_NAME_PROPERTY_ID = 7
PROPERTY_NAME_PROPERTY = "Name"
PROPERTY_TYPE_PROPERTY_ID = 8
PROPERTY_TYPE_PROPERTY = "Type"

# Primitive string data type marker
DATATYPE_STRING = "String"

# Id bounds
UNSAVED_ID = 0
FIRST_USER_ID = 100


def is_builtin_id(entity_id: int) -> bool:
    """Whether an id belongs to the reserved built-in metadata range."""
    return 0 < entity_id < FIRST_USER_ID


class DataKind(Enum):
    """Storage kind of a property value.

    PRIMITIVE values live in the string attribute table, REFERENCE values
    in the reference attribute table.
    """

    PRIMITIVE = "primitive"
    REFERENCE = "reference"


@dataclass(frozen=True)
class DataType:
    """Resolved data type of a property.

    Attributes:
        kind: PRIMITIVE or REFERENCE
        type_id: Target type id for references (None for primitives)
        type_name: Target type name for references, "String" for primitives
    """

    kind: DataKind
    type_id: int | None = None
    type_name: str = DATATYPE_STRING

    @classmethod
    def primitive(cls) -> DataType:
        return cls(kind=DataKind.PRIMITIVE)

    @classmethod
    def reference(cls, type_id: int, type_name: str) -> DataType:
        return cls(kind=DataKind.REFERENCE, type_id=type_id, type_name=type_name)

    @property
    def is_primitive(self) -> bool:
        return self.kind is DataKind.PRIMITIVE

    @property
    def is_reference(self) -> bool:
        return self.kind is DataKind.REFERENCE

    def __str__(self) -> str:
        return self.type_name


@dataclass(frozen=True)
class PropertyDef:
    """Catalog view of a registered Property.

    Attributes:
        property_id: Id of the Property entity
        name: Property name, unique within the owner type
        owner_id: Id of the owning Type entity
        data_type: Resolved data type
        entity: The Property entity itself
    """

    property_id: int
    name: str
    owner_id: int
    data_type: DataType
    entity: Entity

    def info(self) -> PropertyInfo:
        return PropertyInfo(name=self.name, data_type=self.data_type.type_name)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary representation."""
        return {
            "property_id": self.property_id,
            "name": self.name,
            "owner_id": self.owner_id,
            "data_type": self.data_type.type_name,
            "kind": self.data_type.kind.value,
        }


@dataclass(frozen=True)
class PropertyInfo:
    """Name and declared data type of a property."""

    name: str
    data_type: str
