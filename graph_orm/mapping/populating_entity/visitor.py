import typing

from graph_orm.abstract_entity_tree import (
    Visitor,
    FieldNode,
    EntityNode,
    ValueObjectNode,
    ToOneNode,
)
from graph_orm.relationship_graph import RelationshipGraph
from graph_orm.storages.types import from_storage


class EntityPopulatingVisitor(Visitor):
    """Reads a row back into constructor arguments and owning foreign keys."""

    def __init__(self, row: typing.Dict[str, typing.Any], graph: RelationshipGraph) -> None:
        self._row = row
        self._graph = graph
        self._stacked_vo: typing.List[ValueObjectNode] = []
        self._dicts_stack: typing.List[dict] = []
        self._foreign_keys: typing.Dict[str, typing.Any] = {}
        self._result: typing.Optional[dict] = None

    @property
    def _prefix(self) -> str:
        if not self._stacked_vo:
            return ""
        return "_".join(vo.name for vo in self._stacked_vo) + "_"

    @property
    def result(self) -> dict:
        return self._result

    @property
    def foreign_keys(self) -> typing.Dict[str, typing.Any]:
        return self._foreign_keys

    def visit_field(self, field: FieldNode) -> None:
        self._dicts_stack[-1][field.name] = from_storage(self._row.get(f"{self._prefix}{field.name}"), field.type)

    def visit_entity(self, entity: EntityNode) -> None:
        self._dicts_stack.append({})

    def leave_entity(self, entity: EntityNode) -> None:
        self._result = self._dicts_stack.pop()

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        self._stacked_vo.append(value_object)
        self._dicts_stack.append({})

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self._stacked_vo.pop()
        vo_dict = self._dicts_stack.pop()
        if value_object.optional and all(v is None for v in vo_dict.values()):
            # One is not able to tell the difference between optional object with all its fields = None or
            # an absence of entire value object
            instance = None
        else:
            instance = value_object.type(**vo_dict)
        self._dicts_stack[-1][value_object.name] = instance

    def visit_to_one(self, to_one: ToOneNode) -> None:
        relationship = to_one.relationship
        if not relationship.is_owning:
            return
        column = RelationshipGraph.foreign_key_column(relationship)
        identity_type = self._graph.identity_type(relationship.target)
        self._foreign_keys[to_one.name] = from_storage(self._row.get(column), identity_type)


def from_row(
    graph: RelationshipGraph, entity_cls: typing.Type, row: typing.Dict[str, typing.Any]
) -> typing.Tuple[dict, typing.Dict[str, typing.Any]]:
    visitor = EntityPopulatingVisitor(row, graph)
    visitor.traverse_from(graph.node(entity_cls))
    return visitor.result, visitor.foreign_keys
