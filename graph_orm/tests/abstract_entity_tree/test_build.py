import typing
from decimal import Decimal
from enum import Enum
from uuid import UUID

import pytest

from graph_orm import abstract_entity_tree
from graph_orm.abstract_entity_tree import (
    AbstractEntityTree,
    EntityNode,
    FieldNode,
    ToManyNode,
    ToOneNode,
    ValueObjectNode,
)
from graph_orm import Entity, Identity, ValueObject, ToMany, ToOne
from graph_orm.exceptions import SchemaInconsistency


class DummyEnum(Enum):
    FIRST_VALUE = "FIRST_VALUE"
    ANOTHER_VALUE = "ANOTHER_VALUE"


class SimpleFlat(Entity):
    guid: Identity[UUID]
    name: typing.Optional[str]
    score: int
    enumerated: DummyEnum
    balance: typing.Optional[Decimal]


def test_builds_simple_flat_entity():
    result = abstract_entity_tree.build(SimpleFlat)

    assert result == AbstractEntityTree(
        root=EntityNode(
            name="simple_flat",
            type=SimpleFlat,
            children=[
                FieldNode(name="guid", type=UUID, is_identity=True),
                FieldNode(name="name", type=str, optional=True),
                FieldNode(name="score", type=int),
                FieldNode(name="enumerated", type=DummyEnum),
                FieldNode(name="balance", type=Decimal, optional=True),
            ],
        )
    )


class NestedValueObject(ValueObject):
    amount: Decimal
    currency: str


class AggregateWithOptionalNested(Entity):
    id: Identity[int]
    wallet: typing.Optional[NestedValueObject]
    savings: NestedValueObject


def test_value_objects_become_nested_nodes():
    result = abstract_entity_tree.build(AggregateWithOptionalNested)

    assert result == AbstractEntityTree(
        root=EntityNode(
            name="aggregate_with_optional_nested",
            type=AggregateWithOptionalNested,
            children=[
                FieldNode(name="id", type=int, is_identity=True),
                ValueObjectNode(
                    name="wallet",
                    type=NestedValueObject,
                    optional=True,
                    children=[
                        FieldNode(name="amount", type=Decimal),
                        FieldNode(name="currency", type=str),
                    ],
                ),
                ValueObjectNode(
                    name="savings",
                    type=NestedValueObject,
                    children=[
                        FieldNode(name="amount", type=Decimal),
                        FieldNode(name="currency", type=str),
                    ],
                ),
            ],
        )
    )


class Shelf(Entity):
    id: Identity[int]
    label: str

    books = ToMany("Book", mapped_by="shelf")


class Book(Entity):
    id: Identity[int]
    title: str

    shelf = ToOne(Shelf, back_populates="books")


def test_relationships_become_leaf_nodes():
    shelf_tree = abstract_entity_tree.build(Shelf)
    book_tree = abstract_entity_tree.build(Book)

    assert shelf_tree.root.relationships == [
        ToManyNode(name="books", type="Book", optional=True, relationship=Shelf.books)
    ]
    assert book_tree.root.relationships == [ToOneNode(name="shelf", type=Shelf, optional=True, relationship=Book.shelf)]
    assert [node.name for node in book_tree] == ["book", "id", "title", "shelf"]


def test_entity_node_exposes_identity():
    tree = abstract_entity_tree.build(Book)

    assert tree.root.identity == FieldNode(name="id", type=int, is_identity=True)


def test_collections_must_be_relationships():
    class WithList(Entity):
        id: Identity[int]
        tags: typing.List[str]

    with pytest.raises(SchemaInconsistency):
        abstract_entity_tree.build(WithList)


def test_table_name_is_underscored_plural():
    assert abstract_entity_tree.table_name(SimpleFlat) == "simple_flats"
    assert abstract_entity_tree.table_name(Book) == "books"
