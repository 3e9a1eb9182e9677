import itertools
import logging
import threading
import typing
import uuid

from graph_orm.exceptions import IdentityConflict, SchemaInconsistency
from graph_orm.state import identity_of

logger = logging.getLogger(__name__)

Key = typing.Tuple[type, typing.Any]


class IdentitySet:
    """Insertion-ordered set of entities compared by object identity."""

    def __init__(self, entities: typing.Iterable[typing.Any] = ()) -> None:
        self._entities: typing.Dict[int, typing.Any] = {id(entity): entity for entity in entities}

    def add(self, entity: typing.Any) -> None:
        self._entities[id(entity)] = entity

    def discard(self, entity: typing.Any) -> None:
        self._entities.pop(id(entity), None)

    def __contains__(self, entity: typing.Any) -> bool:
        return id(entity) in self._entities

    def __iter__(self) -> typing.Iterator[typing.Any]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def copy(self) -> "IdentitySet":
        return IdentitySet(self._entities.values())


class IdentityMap:
    """At most one in-memory instance per (type, id) inside a session."""

    def __init__(self) -> None:
        self._entities: typing.Dict[Key, typing.Any] = {}

    def get(self, entity_type: type, entity_id: typing.Any) -> typing.Optional[typing.Any]:
        return self._entities.get((entity_type, entity_id))

    def add(self, entity: typing.Any) -> None:
        key = (type(entity), identity_of(entity))
        existing = self._entities.get(key)
        if existing is not None and existing is not entity:
            raise IdentityConflict(*key)
        self._entities[key] = entity

    def remove(self, entity: typing.Any) -> None:
        key = (type(entity), identity_of(entity))
        if self._entities.get(key) is entity:
            del self._entities[key]

    def of_type(self, entity_type: type) -> typing.List[typing.Any]:
        return [entity for (klass, _), entity in self._entities.items() if klass is entity_type]

    def __contains__(self, entity: typing.Any) -> bool:
        return self._entities.get((type(entity), identity_of(entity))) is entity

    def __len__(self) -> int:
        return len(self._entities)

    def copy(self) -> "IdentityMap":
        clone = IdentityMap()
        clone._entities = dict(self._entities)
        return clone


class IdentityRegistry:
    """Hands out ids for the client-sequence mode.

    Shared by every session of a factory, so access is serialized. Integer ids
    continue from the largest key the storage holds and are never handed out twice;
    UUID identities are random.
    """

    def __init__(self, storage: typing.Any, graph: typing.Any) -> None:
        self._storage = storage
        self._graph = graph
        self._sequences: typing.Dict[type, typing.Iterator[int]] = {}
        self._lock = threading.Lock()

    @property
    def id_generation(self) -> typing.Any:
        return self._storage.id_generation

    def assign_id(self, entity_type: type) -> typing.Any:
        identity_type = self._graph.identity_type(entity_type)
        if identity_type is uuid.UUID:
            return uuid.uuid4()
        if identity_type is not int:
            raise SchemaInconsistency(f"Cannot generate {identity_type.__name__} ids for {entity_type.__name__}")

        with self._lock:
            sequence = self._sequences.get(entity_type)
            if sequence is None:
                start = self._storage.max_key(self._graph.table_name(entity_type)) or 0
                sequence = self._sequences[entity_type] = itertools.count(start + 1)
            entity_id = next(sequence)
        logger.debug("Assigned id %s to new %s", entity_id, entity_type.__name__)
        return entity_id

    @staticmethod
    def bind(entity: typing.Any, entity_id: typing.Any, identity_map: IdentityMap) -> None:
        """Give ``entity`` its id and register it, refusing to rebind or to shadow another instance."""
        current = identity_of(entity)
        if current is not None and current != entity_id:
            raise IdentityConflict(type(entity), current, f"{type(entity).__name__} already has id {current!r}")
        existing = identity_map.get(type(entity), entity_id)
        if existing is not None and existing is not entity:
            raise IdentityConflict(type(entity), entity_id)
        setattr(entity, type(entity).__identity__, entity_id)
        identity_map.add(entity)
