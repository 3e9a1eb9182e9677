import types
import typing
from collections import deque

import attr
import inflection

from graph_orm.entity import Entity, Identity, ValueObject
from graph_orm.exceptions import SchemaInconsistency
from graph_orm.relationships import Cardinality, Relationship


def _is_generic(field_type: typing.Type) -> bool:
    return hasattr(field_type, "__origin__")


def _get_wrapped_type(wrapped_type: typing.Any) -> typing.Type:
    return wrapped_type.__args__[0]


def _is_field_optional(field_type: typing.Type) -> bool:
    args = typing.get_args(field_type)
    return typing.get_origin(field_type) in (typing.Union, types.UnionType) and len(args) == 2 and type(None) in args


def _unwrap_optional(field_type: typing.Type) -> typing.Type:
    return next(arg for arg in typing.get_args(field_type) if arg is not type(None))


def _is_value_object(field_type: typing.Type) -> bool:
    return isinstance(field_type, type) and issubclass(field_type, ValueObject)


def _is_identity(field_type: typing.Type) -> bool:
    return getattr(field_type, "__origin__", None) is Identity


def _is_list(field_type: typing.Type) -> bool:
    return typing.get_origin(field_type) in (list, typing.List)


class Visitor:
    def traverse_from(self, node: "Node") -> None:
        node.accept(self)
        for child in node.children:
            self.traverse_from(child)
        node.farewell(self)

    def visit_field(self, field: "FieldNode") -> None:
        pass

    def leave_field(self, field: "FieldNode") -> None:
        pass

    def visit_entity(self, entity: "EntityNode") -> None:
        pass

    def leave_entity(self, entity: "EntityNode") -> None:
        pass

    def visit_value_object(self, value_object: "ValueObjectNode") -> None:
        pass

    def leave_value_object(self, value_object: "ValueObjectNode") -> None:
        pass

    def visit_to_one(self, to_one: "ToOneNode") -> None:
        pass

    def leave_to_one(self, to_one: "ToOneNode") -> None:
        pass

    def visit_to_many(self, to_many: "ToManyNode") -> None:
        pass

    def leave_to_many(self, to_many: "ToManyNode") -> None:
        pass


@attr.s(auto_attribs=True, kw_only=True)
class Node:
    name: str
    type: typing.Type
    optional: bool = False
    children: typing.List["Node"] = attr.Factory(list)

    def accept(self, visitor: Visitor) -> None:
        raise NotImplementedError

    def farewell(self, visitor: Visitor) -> None:
        raise NotImplementedError


@attr.s(auto_attribs=True, kw_only=True)
class FieldNode(Node):
    is_identity: bool = False

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_field(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_field(self)


@attr.s(auto_attribs=True, kw_only=True)
class EntityNode(Node):
    @property
    def identity(self) -> FieldNode:
        return next(child for child in self.children if isinstance(child, FieldNode) and child.is_identity)

    @property
    def relationships(self) -> typing.List["RelationshipNode"]:
        return [child for child in self.children if isinstance(child, RelationshipNode)]

    def accept(self, visitor: Visitor) -> None:
        visitor.visit_entity(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_entity(self)


@attr.s(auto_attribs=True, kw_only=True)
class ValueObjectNode(Node):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_value_object(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_value_object(self)


@attr.s(auto_attribs=True, kw_only=True)
class RelationshipNode(Node):
    relationship: typing.Optional[Relationship] = None


@attr.s(auto_attribs=True, kw_only=True)
class ToOneNode(RelationshipNode):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_to_one(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_to_one(self)


@attr.s(auto_attribs=True, kw_only=True)
class ToManyNode(RelationshipNode):
    def accept(self, visitor: Visitor) -> None:
        visitor.visit_to_many(self)

    def farewell(self, visitor: Visitor) -> None:
        visitor.leave_to_many(self)


@attr.s(auto_attribs=True)
class AbstractEntityTree:
    root: EntityNode

    def __iter__(self) -> typing.Generator[Node, None, None]:
        def iterate_dfs() -> typing.Generator[Node, None, None]:
            nodes_left: typing.Deque[Node] = deque([self.root])

            while nodes_left:
                current = nodes_left.pop()
                yield current
                nodes_left.extend(current.children[::-1])

        return iterate_dfs()


def table_name(entity_cls: typing.Type[Entity]) -> str:
    return inflection.pluralize(inflection.underscore(entity_cls.__name__))


def build(root: typing.Type[Entity]) -> AbstractEntityTree:
    """Build the tree of one entity type.

    Relationship targets must already be resolved to entity classes; related
    entities are leaves of the tree, never expanded, so cyclic graphs stay finite.
    """

    def parse_value_object(vo_type: typing.Type[ValueObject], name: str, optional: bool) -> ValueObjectNode:
        return ValueObjectNode(name=name, type=vo_type, optional=optional, children=parse_fields(vo_type))

    def parse_fields(node_type: typing.Type) -> typing.List[Node]:
        children: typing.List[Node] = []
        for field in attr.fields(node_type):
            field_type = field.type
            field_name = field.name
            field_optional = False
            is_identity = False

            if _is_identity(field_type):
                field_type = _get_wrapped_type(field_type)
                is_identity = True
            elif _is_field_optional(field_type):
                field_type = _unwrap_optional(field_type)
                field_optional = True
            elif _is_list(field_type):
                raise SchemaInconsistency(
                    f"{node_type.__name__}.{field_name}: collections must be declared as ToMany relationships"
                )
            elif _is_generic(field_type):
                raise SchemaInconsistency(f"Unhandled Generic type - {field_type}")

            if _is_value_object(field_type):
                children.append(parse_value_object(field_type, field_name, field_optional))
                continue

            children.append(
                FieldNode(name=field_name, type=field_type, optional=field_optional, is_identity=is_identity)
            )
        return children

    children = parse_fields(root)
    for name, relationship in root.__relationships__.items():
        node_cls = ToOneNode if relationship.cardinality is Cardinality.TO_ONE else ToManyNode
        children.append(
            node_cls(name=name, type=relationship.target, optional=relationship.nullable, relationship=relationship)
        )

    return AbstractEntityTree(EntityNode(name=inflection.underscore(root.__name__), type=root, children=children))
