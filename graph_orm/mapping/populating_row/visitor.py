from typing import Any, Dict, List

from graph_orm.abstract_entity_tree import (
    Visitor,
    FieldNode,
    EntityNode,
    ValueObjectNode,
    ToOneNode,
)
from graph_orm.entity import Entity
from graph_orm.relationship_graph import RelationshipGraph
from graph_orm.storages.types import to_storage


class RowPopulatingVisitor(Visitor):
    """Flattens an entity into a row: scalar columns, embedded value objects and owning foreign keys."""

    EMPTY_PREFIX = ""

    def __init__(self, entity: Entity) -> None:
        self._entity = entity
        self._objects_stack: List[Any] = []
        self._stacked_vo: List[ValueObjectNode] = []
        self._row: Dict[str, Any] = {}

    @property
    def _prefix(self) -> str:
        if not self._stacked_vo:
            return self.EMPTY_PREFIX
        return "_".join(vo.name for vo in self._stacked_vo) + "_"

    @property
    def result(self) -> Dict[str, Any]:
        return self._row

    def visit_entity(self, entity: EntityNode) -> None:
        self._objects_stack.append(self._entity)

    def leave_entity(self, entity: EntityNode) -> None:
        self._objects_stack.pop()

    def visit_field(self, field: FieldNode) -> None:
        current = self._objects_stack[-1]
        # may be None if the value object is optional
        value = getattr(current, field.name) if current is not None else None
        self._row[f"{self._prefix}{field.name}"] = to_storage(value)

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        current = self._objects_stack[-1]
        self._objects_stack.append(getattr(current, value_object.name) if current is not None else None)
        self._stacked_vo.append(value_object)

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self._stacked_vo.pop()
        self._objects_stack.pop()

    def visit_to_one(self, to_one: ToOneNode) -> None:
        relationship = to_one.relationship
        if not relationship.is_owning:
            return
        ref = getattr(self._entity, to_one.name)
        column = RelationshipGraph.foreign_key_column(relationship)
        self._row[column] = to_storage(ref.target_id())


def to_row(graph: RelationshipGraph, entity: Entity) -> Dict[str, Any]:
    visitor = RowPopulatingVisitor(entity)
    visitor.traverse_from(graph.node(type(entity)))
    return visitor.result
