"""
Error types for dyndb.

This module defines every exception surfaced to callers:
- DynDbError: Base exception
- UnknownTypeError / UnknownPropertyError: Catalog lookup misses
- TypeMismatchError: Wrong value kind for a property
- InvalidDataTypeError: Property data type is neither String nor a known Type
- ProtectedEntityError: Write attempted on built-in metadata
- ClosedSessionError: Operation after close
- StorageFailure: Wrapped sqlite3 error
- InvalidEntityError: Entity cannot be used for the requested operation

Invariants:
    - All errors inherit from DynDbError
    - Validation errors are raised before any storage statement runs
    - The underlying cause (if any) is kept on ``cause`` and chained
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DynDbError(Exception):
    """Base exception for all dyndb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        cause: Underlying exception, if any
    """

    default_code = "DYNDB_ERROR"

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = self.default_code
        self.details = details or {}
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class UnknownTypeError(DynDbError):
    """Type name or id is not registered in the catalog."""

    default_code = "UNKNOWN_TYPE"

    def __init__(self, type_ref: int | str) -> None:
        super().__init__(
            f"Unknown type: {type_ref!r}",
            details={"type": type_ref},
        )
        self.type_ref = type_ref


class UnknownPropertyError(DynDbError):
    """Property is not defined on the entity's type.

    Includes suggestions for similar property names.

    Attributes:
        property_ref: The unknown property name or id
        type_name: The type that was searched
        suggestions: Similar property names
    """

    default_code = "UNKNOWN_PROPERTY"

    def __init__(
        self,
        property_ref: int | str,
        type_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown property {property_ref!r} on type '{type_name}'"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            details={
                "property": property_ref,
                "type_name": type_name,
                "suggestions": suggestions,
            },
        )
        self.property_ref = property_ref
        self.type_name = type_name
        self.suggestions = suggestions


class TypeMismatchError(DynDbError):
    """Value kind does not match the property's declared data type.

    Raised when:
    - A string setter/getter is used on a reference property (or vice versa)
    - A reference value's type differs from the property's target type
    - A non-string value is given to a string property
    """

    default_code = "TYPE_MISMATCH"


class InvalidDataTypeError(DynDbError):
    """Property data type names neither String nor a registered Type."""

    default_code = "INVALID_DATA_TYPE"

    def __init__(self, data_type: Optional[str]) -> None:
        super().__init__(
            f"Invalid data type {data_type!r}: must be 'String' or a registered type name",
            details={"data_type": data_type},
        )
        self.data_type = data_type


class ProtectedEntityError(DynDbError):
    """Persist or delete attempted on built-in metadata (ids below 100)."""

    default_code = "PROTECTED_ENTITY"

    def __init__(self, message: str, entity_id: int) -> None:
        super().__init__(message, details={"entity_id": entity_id})
        self.entity_id = entity_id


class ClosedSessionError(DynDbError):
    """Operation attempted after the data store was closed."""

    default_code = "CLOSED_SESSION"

    def __init__(self, message: str = "Data store closed") -> None:
        super().__init__(message)


class StorageFailure(DynDbError):
    """Underlying relational storage raised an error.

    The underlying ``sqlite3.Error`` is available as ``cause``. The ambient
    transaction is left open so the caller can roll back.
    """

    default_code = "STORAGE_FAILURE"


class InvalidEntityError(DynDbError):
    """Entity cannot take part in the requested operation.

    Raised when:
    - A deleted entity is persisted or deleted again
    - A reference is set to an entity that has not been persisted
    - A Type or Property definition is incomplete or duplicates an existing name
    """

    default_code = "INVALID_ENTITY"
