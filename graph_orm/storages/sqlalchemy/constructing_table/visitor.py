import uuid
from typing import Optional

from sqlalchemy import Column, ForeignKey

from graph_orm.abstract_entity_tree import (
    Visitor,
    EntityNode,
    ValueObjectNode,
    FieldNode,
    ToOneNode,
)
from graph_orm.relationship_graph import RelationshipGraph
from graph_orm.storages import IdGeneration
from graph_orm.storages.sqlalchemy import native_type_to_column
from graph_orm.storages.sqlalchemy.registry import SaRegistry
from graph_orm.storages.sqlalchemy.constructing_table.raw_table import RawTable


class TableConstructingVisitor(Visitor):
    EMPTY_PREFIX = ""

    def __init__(self, graph: RelationshipGraph, registry: SaRegistry, id_generation: IdGeneration) -> None:
        self._graph = graph
        self._registry = registry
        self._id_generation = id_generation
        self._raw_table: Optional[RawTable] = None
        self._prefix = self.EMPTY_PREFIX
        self._last_optional_vo_node: Optional[ValueObjectNode] = None

    def visit_field(self, field: FieldNode) -> None:
        kwargs = {
            "primary_key": field.is_identity,
            "nullable": bool(field.optional or self._last_optional_vo_node),
        }
        if field.is_identity and field.type is uuid.UUID and self._id_generation is IdGeneration.STORAGE_ASSIGNED:
            kwargs["default"] = lambda: str(uuid.uuid4())
        self._raw_table.append_column(
            Column(f"{self._prefix}{field.name}", native_type_to_column.convert(field.type), **kwargs)
        )

    def visit_entity(self, entity: EntityNode) -> None:
        table_name = self._graph.table_name(entity.type)
        self._raw_table = RawTable(name=table_name)
        self._registry.keys[table_name] = entity.identity.name

    def leave_entity(self, entity: EntityNode) -> None:
        table = self._raw_table.materialize(self._registry.metadata)
        self._registry.tables[table.name] = table
        self._raw_table = None

    def visit_value_object(self, value_object: ValueObjectNode) -> None:
        # value objects' fields are embedded into entity above it
        self._prefix = f"{self._prefix}{value_object.name}_"
        if not self._last_optional_vo_node and value_object.optional:
            self._last_optional_vo_node = value_object

    def leave_value_object(self, value_object: ValueObjectNode) -> None:
        self._prefix = self._prefix[: -len(f"{value_object.name}_")]
        if self._last_optional_vo_node == value_object:
            self._last_optional_vo_node = None

    def visit_to_one(self, to_one: ToOneNode) -> None:
        relationship = to_one.relationship
        if not relationship.is_owning:
            return
        target = relationship.target
        self._raw_table.append_column(
            Column(
                self._graph.foreign_key_column(relationship),
                native_type_to_column.convert(self._graph.identity_type(target)),
                ForeignKey(f"{self._graph.table_name(target)}.{target.__identity__}"),
                nullable=relationship.nullable,
                index=True,
            )
        )
