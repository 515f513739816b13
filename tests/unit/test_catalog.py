"""
Unit tests for the type catalog.

Tests cover:
- Circular bootstrap of Type and Property
- Registration of user-defined types and properties
- Property lookup and suggestions
- Data type validation
- Definition checks and unregistration
"""

import pytest

from dyndb.entity import Entity, EntityState
from dyndb.errors import (
    InvalidDataTypeError,
    InvalidEntityError,
    ProtectedEntityError,
    UnknownPropertyError,
    UnknownTypeError,
)
from dyndb.schema import DataKind, PropertyInfo
from dyndb.schema.catalog import TypeCatalog
from dyndb.schema.types import (
    PROPERTY_NAME_PROPERTY_ID,
    PROPERTY_OWNER_PROPERTY_ID,
    PROPERTY_TYPE_ID,
    PROPERTY_TYPE_PROPERTY_ID,
    TYPE_NAME_PROPERTY_ID,
    TYPE_TYPE_ID,
)


def stored_type(catalog: TypeCatalog, type_id: int, name: str) -> Entity:
    """Helper to build a persisted Type entity."""
    entity = Entity(catalog, TYPE_TYPE_ID, "Type", entity_id=type_id, state=EntityState.PERSISTED)
    entity.load_string(TYPE_NAME_PROPERTY_ID, name)
    return entity


def stored_property(
    catalog: TypeCatalog, property_id: int, owner_id: int, name: str, data_type: str
) -> Entity:
    """Helper to build a persisted Property entity."""
    entity = Entity(
        catalog, PROPERTY_TYPE_ID, "Property", entity_id=property_id, state=EntityState.PERSISTED
    )
    entity.load_reference(PROPERTY_OWNER_PROPERTY_ID, owner_id)
    entity.load_string(PROPERTY_NAME_PROPERTY_ID, name)
    entity.load_string(PROPERTY_TYPE_PROPERTY_ID, data_type)
    return entity


@pytest.fixture
def catalog():
    """Bootstrapped catalog without storage."""
    catalog = TypeCatalog()
    catalog.bootstrap()
    return catalog


class TestBootstrap:
    """Tests for the built-in metadata."""

    def test_builtin_types(self, catalog):
        """Bootstrap registers Type and Property."""
        assert catalog.type_names() == ["Type", "Property"]
        assert catalog.get_type("Type").id == 1
        assert catalog.get_type("Property").id == 2

    def test_builtin_properties(self, catalog):
        """Built-in properties have fixed ids and data types."""
        assert catalog.lookup_property(1, "Name").property_id == 5
        assert catalog.lookup_property(2, "Owner").property_id == 6
        assert catalog.lookup_property(2, "Name").property_id == 7
        assert catalog.lookup_property(2, "Type").property_id == 8

    def test_property_declaration_order(self, catalog):
        """Properties are listed in declaration order."""
        assert catalog.properties_for_type("Property") == [
            PropertyInfo("Owner", "Type"),
            PropertyInfo("Name", "String"),
            PropertyInfo("Type", "String"),
        ]
        assert catalog.properties_for_type("Type") == [PropertyInfo("Name", "String")]

    def test_type_is_its_own_type(self, catalog):
        """The Type type is an instance of itself."""
        type_type = catalog.get_type("Type")
        assert type_type.type_id == 1
        assert type_type.type is type_type
        assert type_type.get_string("Name") == "Type"

    def test_owner_references_resolved(self, catalog):
        """Built-in property owners resolve to the catalog's Type entities."""
        owner = catalog.lookup_property(2, "Owner")
        assert owner.data_type.kind is DataKind.REFERENCE
        assert owner.data_type.type_id == 1

        name_entity = catalog.lookup_property(1, "Name").entity
        assert name_entity.get_reference("Owner") is catalog.get_type("Type")
        assert name_entity.get_string("Type") == "String"

    def test_bootstrap_entities_clean(self, catalog):
        """Bootstrap entities are persisted and carry no modified flags."""
        for type_entity in catalog.types():
            assert type_entity.state is EntityState.PERSISTED
            assert not type_entity.is_modified("Name")
        for prop in catalog.properties(PROPERTY_TYPE_ID):
            assert prop.entity.state is EntityState.PERSISTED
            assert not prop.entity.is_modified("Owner")

    def test_bootstrap_twice(self, catalog):
        """Bootstrap rebuilds from scratch."""
        catalog.register_type(stored_type(catalog, 101, "Address"))
        catalog.bootstrap()
        assert catalog.type_names() == ["Type", "Property"]


class TestLookup:
    """Tests for catalog lookups."""

    def test_unknown_type(self, catalog):
        """get_type raises on a miss, find_type returns None."""
        with pytest.raises(UnknownTypeError):
            catalog.get_type("Person")
        with pytest.raises(UnknownTypeError):
            catalog.type_name(404)
        assert catalog.find_type("Person") is None
        assert catalog.find_type(404) is None

    def test_unknown_property_suggests(self, catalog):
        """Lookup miss suggests close property names."""
        with pytest.raises(UnknownPropertyError) as exc_info:
            catalog.lookup_property(PROPERTY_TYPE_ID, "Nam")

        assert "Name" in exc_info.value.suggestions
        assert exc_info.value.type_name == "Property"

    def test_lookup_miss_creates_nothing(self, catalog):
        """The catalog never auto-creates entries."""
        with pytest.raises(UnknownPropertyError):
            catalog.lookup_property(TYPE_TYPE_ID, "Color")
        with pytest.raises(UnknownPropertyError):
            catalog.lookup_property_by_id(TYPE_TYPE_ID, 6)

        assert [p.name for p in catalog.properties(TYPE_TYPE_ID)] == ["Name"]
        assert catalog.type_names() == ["Type", "Property"]

    def test_lookup_by_id(self, catalog):
        """Properties can be looked up by id within their owner type."""
        assert catalog.lookup_property_by_id(PROPERTY_TYPE_ID, 8).name == "Type"
        assert catalog.property_name(PROPERTY_TYPE_ID, 6) == "Owner"
        assert catalog.property_name(PROPERTY_TYPE_ID, 99) == "99"

    @pytest.mark.parametrize(
        "data_type, valid",
        [("String", True), ("Type", True), ("Property", True), ("string", False), ("Address", False), ("", False)],
    )
    def test_validate_data_type(self, catalog, data_type, valid):
        """A data type is String or a registered type name."""
        assert catalog.validate_data_type(data_type) is valid

    def test_to_dict(self, catalog):
        """Catalog converts to a dict sorted by type id."""
        data = catalog.to_dict()
        assert [t["type_id"] for t in data["types"]] == [1, 2]
        assert [p["name"] for p in data["types"][1]["properties"]] == ["Owner", "Name", "Type"]
        assert data["types"][1]["properties"][0]["kind"] == "reference"


class TestRegistration:
    """Tests for user-defined types and properties."""

    def test_register_type(self, catalog):
        """Registered types become valid data types."""
        catalog.register_type(stored_type(catalog, 101, "Address"))

        assert catalog.type_names() == ["Type", "Property", "Address"]
        assert catalog.validate_data_type("Address")
        assert catalog.type_name(101) == "Address"

    def test_register_property(self, catalog):
        """Registered properties resolve their data type once."""
        catalog.register_type(stored_type(catalog, 101, "Address"))
        catalog.register_type(stored_type(catalog, 102, "Person"))
        catalog.register_property(stored_property(catalog, 103, 102, "FirstName", "String"))
        catalog.register_property(stored_property(catalog, 104, 102, "HomeAddress", "Address"))

        home = catalog.lookup_property(102, "HomeAddress")
        assert home.data_type.is_reference
        assert home.data_type.type_id == 101
        assert catalog.lookup_property(102, "FirstName").data_type.is_primitive
        assert catalog.properties_for_type("Person") == [
            PropertyInfo("FirstName", "String"),
            PropertyInfo("HomeAddress", "Address"),
        ]

    def test_register_property_unknown_owner(self, catalog):
        """A property's owner must already be registered."""
        with pytest.raises(UnknownTypeError):
            catalog.register_property(stored_property(catalog, 103, 102, "FirstName", "String"))

    def test_register_property_invalid_data_type(self, catalog):
        """A property's data type must be String or a registered type."""
        catalog.register_type(stored_type(catalog, 102, "Person"))
        with pytest.raises(InvalidDataTypeError):
            catalog.register_property(stored_property(catalog, 103, 102, "Home", "Address"))
        assert catalog.properties(102) == []

    def test_register_duplicate_type_name(self, catalog):
        """Two types cannot share a name."""
        catalog.register_type(stored_type(catalog, 101, "Address"))
        with pytest.raises(InvalidEntityError, match="already registered"):
            catalog.register_type(stored_type(catalog, 102, "Address"))

    def test_reregister_replaces(self, catalog):
        """Re-registering a property id replaces its entries."""
        catalog.register_type(stored_type(catalog, 101, "Address"))
        catalog.register_property(stored_property(catalog, 102, 101, "Street", "String"))
        catalog.register_property(stored_property(catalog, 102, 101, "Street", "String"))

        assert [p.name for p in catalog.properties(101)] == ["Street"]

    def test_unregister_type(self, catalog):
        """Unregistering a type drops it and its properties."""
        address = stored_type(catalog, 101, "Address")
        catalog.register_type(address)
        catalog.register_property(stored_property(catalog, 102, 101, "Street", "String"))

        catalog.unregister(address)

        assert catalog.find_type("Address") is None
        assert not catalog.validate_data_type("Address")
        assert catalog.properties(101) == []

    def test_unregister_property(self, catalog):
        """Unregistering a property keeps the other properties."""
        catalog.register_type(stored_type(catalog, 101, "Address"))
        street = stored_property(catalog, 102, 101, "Street", "String")
        catalog.register_property(street)
        catalog.register_property(stored_property(catalog, 103, 101, "City", "String"))

        catalog.unregister(street)

        assert [p.name for p in catalog.properties(101)] == ["City"]
        with pytest.raises(UnknownPropertyError):
            catalog.lookup_property(101, "Street")


class TestCheckDefinition:
    """Tests for check_definition."""

    def test_type_requires_name(self, catalog):
        """A new Type needs a Name."""
        with pytest.raises(InvalidEntityError, match="requires a Name"):
            catalog.check_definition(Entity(catalog, TYPE_TYPE_ID, "Type"))

    def test_type_name_unique(self, catalog):
        """A new Type cannot reuse a name."""
        entity = Entity(catalog, TYPE_TYPE_ID, "Type")
        entity.set_string("Name", "Property")
        with pytest.raises(InvalidEntityError, match="already exists"):
            catalog.check_definition(entity)

    def test_property_requires_owner(self, catalog):
        """A new Property needs an Owner."""
        entity = Entity(catalog, PROPERTY_TYPE_ID, "Property")
        entity.set_string("Name", "Street")
        entity.set_string("Type", "String")
        with pytest.raises(InvalidEntityError, match="requires an Owner"):
            catalog.check_definition(entity)

    def test_property_name_unique_per_owner(self, catalog):
        """A Property name is unique within its owner."""
        entity = Entity(catalog, PROPERTY_TYPE_ID, "Property")
        entity.set_reference("Owner", catalog.get_type("Type"))
        entity.set_string("Name", "Name")
        entity.set_string("Type", "String")
        with pytest.raises(InvalidEntityError, match="already defined"):
            catalog.check_definition(entity)

    def test_property_data_type_checked(self, catalog):
        """A new Property needs a valid data type."""
        entity = Entity(catalog, PROPERTY_TYPE_ID, "Property")
        entity.set_reference("Owner", catalog.get_type("Type"))
        entity.set_string("Name", "Color")
        entity.set_string("Type", "Colour")
        with pytest.raises(InvalidDataTypeError):
            catalog.check_definition(entity)

    def test_valid_property(self, catalog):
        """A complete Property definition passes."""
        entity = Entity(catalog, PROPERTY_TYPE_ID, "Property")
        entity.set_reference("Owner", catalog.get_type("Type"))
        entity.set_string("Name", "Description")
        entity.set_string("Type", "String")
        catalog.check_definition(entity)

    def test_stored_definition_keeps_index_consistent(self, catalog):
        """A rejected rename leaves the stored Type and its index in step."""
        address = stored_type(catalog, 101, "Address")
        catalog.register_type(address)

        with pytest.raises(InvalidEntityError, match="cannot be modified"):
            address.set_string("Name", "Location")

        assert address.get_string("Name") == "Address"
        assert catalog.type_name(101) == "Address"
        assert catalog.find_type("Location") is None
        catalog.check_definition(address)

    def test_builtin_entities_keep_names(self, catalog):
        """Bootstrap entities refuse new values."""
        type_type = catalog.get_type("Type")

        with pytest.raises(ProtectedEntityError):
            type_type.set_string("Name", "Kind")

        assert type_type.get_string("Name") == "Type"
        assert catalog.get_type("Type") is type_type
