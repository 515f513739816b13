"""
Schema module for dyndb.

Built-in metadata ids and names plus the value types handed out by the
type catalog. The catalog itself lives in ``dyndb.schema.catalog``.

Invariants:
    - Ids 1-99 belong to built-in metadata and never change
    - Type "Type" is id 1, type "Property" is id 2
    - Built-in properties are ids 5 (Type.Name), 6 (Property.Owner),
      7 (Property.Name) and 8 (Property.Type)
"""

from .types import (
    DATATYPE_STRING,
    FIRST_USER_ID,
    PROPERTY_NAME_PROPERTY,
    PROPERTY_OWNER_PROPERTY,
    PROPERTY_TYPE_ID,
    PROPERTY_TYPE_NAME,
    PROPERTY_TYPE_PROPERTY,
    TYPE_NAME_PROPERTY,
    TYPE_TYPE_ID,
    TYPE_TYPE_NAME,
    DataKind,
    DataType,
    PropertyDef,
    PropertyInfo,
    is_builtin_id,
)

__all__ = [
    # Built-in metadata
    "TYPE_TYPE_ID",
    "TYPE_TYPE_NAME",
    "PROPERTY_TYPE_ID",
    "PROPERTY_TYPE_NAME",
    "TYPE_NAME_PROPERTY",
    "PROPERTY_OWNER_PROPERTY",
    "PROPERTY_NAME_PROPERTY",
    "PROPERTY_TYPE_PROPERTY",
    "DATATYPE_STRING",
    "FIRST_USER_ID",
    "is_builtin_id",
    # Types
    "DataKind",
    "DataType",
    "PropertyDef",
    "PropertyInfo",
]
