import typing

import pytest

from graph_orm.entity import Entity, Identity, ValueObject
from graph_orm.abstract_entity_tree import (
    AbstractEntityTree,
    FieldNode,
    ToManyNode,
    ToOneNode,
    ValueObjectNode,
    Visitor,
    build,
)
from graph_orm.relationship_graph import build_graph
from graph_orm.relationships import ToMany, ToOne


class Dimensions(ValueObject):
    width: int
    depth: int


class Warehouse(Entity):
    id: Identity[int]
    city: str

    shelves = ToMany("Shelf", mapped_by="warehouse")


class Shelf(Entity):
    id: Identity[int]
    label: str
    size: typing.Optional[Dimensions]

    warehouse = ToOne(Warehouse, back_populates="shelves")


build_graph([Warehouse, Shelf])


class ColumnCollector(Visitor):
    """Lists the storage columns of an entity, the way row mapping names them."""

    def __init__(self) -> None:
        self.prefixes: typing.List[str] = []
        self.columns: typing.List[str] = []
        self.skipped: typing.List[str] = []

    def visit_field(self, field: FieldNode) -> None:
        self.columns.append("_".join(self.prefixes + [field.name]))

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        self.prefixes.append(value_object.name)

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self.prefixes.pop()

    def visit_to_one(self, to_one: ToOneNode) -> None:
        self.columns.append(f"{to_one.name}_id")

    def visit_to_many(self, to_many: ToManyNode) -> None:
        self.skipped.append(to_many.name)


@pytest.mark.parametrize(
    "entity, columns, skipped",
    [
        (Shelf, ["id", "label", "size_width", "size_depth", "warehouse_id"], []),
        (Warehouse, ["id", "city"], ["shelves"]),
    ],
)
def test_visitor_sees_every_node_kind(
    entity: typing.Type[Entity], columns: typing.List[str], skipped: typing.List[str]
) -> None:
    visitor = ColumnCollector()
    visitor.traverse_from(build(entity).root)

    assert visitor.columns == columns
    assert visitor.skipped == skipped
    assert visitor.prefixes == []


def test_relationship_nodes_are_leaves() -> None:
    tree: AbstractEntityTree = build(Shelf)

    assert [node.name for node in tree] == ["shelf", "id", "label", "size", "width", "depth", "warehouse"]
    relationship_node = tree.root.relationships[0]
    assert isinstance(relationship_node, ToOneNode)
    assert relationship_node.type is Warehouse
    assert relationship_node.children == []
