"""Static declaration of how entity types relate to each other.

The graph is assembled once, at startup, from the ``ToOne``/``ToMany``
declarations on entity classes (or explicit ``add_relationship`` calls),
validated eagerly and frozen. Lazy loading, cascading and flushing only read
from it.
"""
import logging
import typing

import attr

from graph_orm import abstract_entity_tree
from graph_orm.abstract_entity_tree import AbstractEntityTree, EntityNode
from graph_orm.entity import Entity
from graph_orm.exceptions import SchemaInconsistency
from graph_orm.registry import Registry
from graph_orm.relationships import (
    Cardinality,
    CascadeSpec,
    Fetch,
    Ownership,
    Relationship,
    ToMany,
    ToOne,
    declared_relationships,
)

logger = logging.getLogger(__name__)

EntityType = typing.Type[Entity]


class RelationshipGraph:
    def __init__(self, registry: typing.Optional[Registry] = None) -> None:
        self.registry = registry or Registry()
        self._built = False
        self._incoming: typing.Dict[EntityType, typing.List[Relationship]] = {}

    @property
    def is_built(self) -> bool:
        return self._built

    def _ensure_mutable(self) -> None:
        if self._built:
            raise SchemaInconsistency("Relationship graph is read-only once built")

    def add_entity(self, entity_cls: EntityType) -> "RelationshipGraph":
        self._ensure_mutable()
        if not (isinstance(entity_cls, type) and issubclass(entity_cls, Entity)):
            raise SchemaInconsistency(f"{entity_cls!r} is not an Entity")
        existing = self.registry.entities_by_name.get(entity_cls.__name__)
        if existing is not None and existing is not entity_cls:
            raise SchemaInconsistency(f"Two entity types are named {entity_cls.__name__}")
        self.registry.register(entity_cls)
        return self

    def add_relationship(
        self,
        owner: EntityType,
        field: str,
        target: typing.Union[str, EntityType],
        cardinality: Cardinality,
        ownership: Ownership = Ownership.OWNING,
        cascade: typing.Optional[CascadeSpec] = None,
        fetch: typing.Optional[Fetch] = None,
        counterpart: typing.Optional[str] = None,
        nullable: bool = True,
    ) -> Relationship:
        """Declare a relationship without touching the entity class body."""
        self._ensure_mutable()
        if field in owner.__relationships__ or field in attr.fields_dict(owner):
            raise SchemaInconsistency(f"{owner.__name__}.{field} is already declared")
        declaration_cls = ToOne if cardinality is Cardinality.TO_ONE else ToMany
        kwargs: typing.Dict[str, typing.Any] = {"cascade": cascade, "fetch": fetch, "nullable": nullable}
        if ownership is Ownership.INVERSE:
            kwargs["mapped_by"] = counterpart
        else:
            kwargs["back_populates"] = counterpart
        relationship = declaration_cls(target, ownership=ownership, **kwargs)
        setattr(owner, field, relationship)
        relationship.__set_name__(owner, field)
        owner.__relationships__ = declared_relationships(owner)
        self.add_entity(owner)
        return relationship

    def build(self) -> "RelationshipGraph":
        self._ensure_mutable()
        entities = list(self.registry.entities_by_name.values())
        for entity_cls in entities:
            for relationship in entity_cls.__relationships__.values():
                self._resolve_target(entity_cls, relationship)
        for entity_cls in entities:
            for relationship in entity_cls.__relationships__.values():
                self._validate(entity_cls, relationship)
        self._check_single_inverse_per_owning(entities)

        for entity_cls in entities:
            self.registry.entities_to_aets[entity_cls] = abstract_entity_tree.build(entity_cls)
            for relationship in self.owning(entity_cls):
                self._incoming.setdefault(relationship.target, []).append(relationship)

        self._built = True
        logger.debug("Built relationship graph of %d entity types", len(entities))
        return self

    def _resolve_target(self, owner: EntityType, relationship: Relationship) -> None:
        try:
            relationship.target = self.registry.resolve(relationship.target)
        except KeyError:
            raise SchemaInconsistency(
                f"{owner.__name__}.{relationship.name} targets unknown entity {relationship.target_name}"
            ) from None

    def _validate(self, owner: EntityType, relationship: Relationship) -> None:
        where = f"{owner.__name__}.{relationship.name}"
        if relationship.cardinality is Cardinality.TO_MANY and relationship.is_owning:
            raise SchemaInconsistency(f"{where}: a ToMany side must be mapped by a ToOne on {relationship.target_name}")

        if relationship.counterpart is None:
            if not relationship.is_owning:
                raise SchemaInconsistency(f"{where}: inverse side does not name its owning counterpart")
            return

        counterpart = relationship.target.__relationships__.get(relationship.counterpart)
        if counterpart is None:
            raise SchemaInconsistency(
                f"{where}: counterpart {relationship.target_name}.{relationship.counterpart} does not exist"
            )
        if counterpart.target is not owner:
            raise SchemaInconsistency(
                f"{where}: counterpart {relationship.target_name}.{counterpart.name} targets {counterpart.target_name}"
            )
        if counterpart.counterpart not in (None, relationship.name):
            raise SchemaInconsistency(
                f"{where}: counterpart {relationship.target_name}.{counterpart.name} pairs with {counterpart.counterpart}"
            )
        if relationship.is_owning == counterpart.is_owning:
            kind = "two owning sides" if relationship.is_owning else "no owning side"
            raise SchemaInconsistency(f"{where} <-> {relationship.target_name}.{counterpart.name}: {kind}")

        owning = relationship if relationship.is_owning else counterpart
        if owning.cardinality is not Cardinality.TO_ONE:
            raise SchemaInconsistency(f"{where}: the owning side of a pair must be a ToOne")

        # the owning side learns its inverse from the mapped_by declaration
        counterpart.counterpart = relationship.name

    def _check_single_inverse_per_owning(self, entities: typing.List[EntityType]) -> None:
        seen: typing.Dict[typing.Tuple[EntityType, str], str] = {}
        for entity_cls in entities:
            for relationship in entity_cls.__relationships__.values():
                if relationship.is_owning:
                    continue
                key = (relationship.target, relationship.counterpart)
                where = f"{entity_cls.__name__}.{relationship.name}"
                if key in seen:
                    raise SchemaInconsistency(
                        f"{where} and {seen[key]} are both mapped by {relationship.target_name}.{relationship.counterpart}"
                    )
                seen[key] = where

    # queries, valid once built

    def entities(self) -> typing.List[EntityType]:
        return list(self.registry.entities_by_name.values())

    def tree(self, entity_cls: EntityType) -> AbstractEntityTree:
        return self.registry.entities_to_aets[entity_cls]

    def node(self, entity_cls: EntityType) -> EntityNode:
        return self.tree(entity_cls).root

    def relationships(self, entity_cls: EntityType) -> typing.Dict[str, Relationship]:
        return entity_cls.__relationships__

    def owning(self, entity_cls: EntityType) -> typing.List[Relationship]:
        """Relationships whose foreign key lives in ``entity_cls``'s rows."""
        return [
            relationship
            for relationship in entity_cls.__relationships__.values()
            if relationship.is_owning and relationship.cardinality is Cardinality.TO_ONE
        ]

    def incoming(self, entity_cls: EntityType) -> typing.List[Relationship]:
        """Owning relationships of any type pointing at ``entity_cls``."""
        return list(self._incoming.get(entity_cls, []))

    def counterpart(self, relationship: Relationship) -> typing.Optional[Relationship]:
        if relationship.counterpart is None:
            return None
        return relationship.target.__relationships__[relationship.counterpart]

    @staticmethod
    def table_name(entity_cls: EntityType) -> str:
        return abstract_entity_tree.table_name(entity_cls)

    def identity_type(self, entity_cls: EntityType) -> type:
        return self.node(entity_cls).identity.type

    @staticmethod
    def foreign_key_column(relationship: Relationship) -> str:
        """Column holding the key of the owning side's target."""
        if relationship.is_owning:
            return f"{relationship.name}_{relationship.target.__identity__}"
        owning = relationship.target.__relationships__[relationship.counterpart]
        return f"{owning.name}_{owning.target.__identity__}"


def build_graph(entity_classes: typing.Iterable[EntityType]) -> RelationshipGraph:
    graph = RelationshipGraph()
    for entity_cls in entity_classes:
        graph.add_entity(entity_cls)
    return graph.build()
