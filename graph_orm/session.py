"""Unit of work.

A session owns an identity map and three disjoint sets of entities: ``new``
(registered, never written), ``managed`` (loaded or flushed) and ``removed``
(scheduled for deletion). Nothing reaches the storage before ``flush()``, and a
flush either commits every pending change or leaves both the storage and the
session exactly as they were before it started.
"""
import itertools
import logging
import typing

import attr

from graph_orm.cascade import CascadeEngine
from graph_orm.config import Config
from graph_orm.exceptions import (
    DanglingReference,
    EntityNotManaged,
    FlushFailed,
    GraphOrmError,
    IdentityConflict,
    NotFound,
)
from graph_orm.identity import IdentityMap, IdentityRegistry, IdentitySet
from graph_orm.lazy import LoadState, RelationshipRef
from graph_orm.mapping import from_row, to_row
from graph_orm.relationship_graph import RelationshipGraph, build_graph
from graph_orm.relationships import Cardinality, Cascade, Fetch, Relationship
from graph_orm.state import Status, identity_of, state_of
from graph_orm.storages import IdGeneration, Storage, StorageError
from graph_orm.storages.types import from_storage, to_storage

logger = logging.getLogger(__name__)

E = typing.TypeVar("E")


class SessionFactory:
    """Shared, thread-safe entry point: one graph, one storage, one identity registry."""

    def __init__(self, storage: Storage, graph: RelationshipGraph, config: typing.Optional[Config] = None) -> None:
        self.storage = storage
        self.graph = graph if graph.is_built else graph.build()
        self.config = config or Config(id_generation=storage.id_generation)
        self.identities = IdentityRegistry(storage, self.graph)
        storage.prepare(self.graph)
        logger.info(
            "Session factory ready: %d entity types on %s", len(self.graph.entities()), type(storage).__name__
        )

    @classmethod
    def from_config(cls, config: Config, entity_classes: typing.Iterable[type]) -> "SessionFactory":
        return cls(config.create_storage(), build_graph(entity_classes), config)

    def open(self) -> "Session":
        return Session(self)

    __call__ = open


@attr.s(auto_attribs=True)
class _FlushSnapshot:
    new: IdentitySet
    managed: IdentitySet
    removed: IdentitySet
    identity_map: IdentityMap
    # id(entity) -> (entity, status, session, entity id) as they were before the flush
    states: typing.Dict[int, typing.Tuple[typing.Any, Status, typing.Any, typing.Any]] = attr.Factory(dict)

    def remember(self, entity: typing.Any) -> None:
        if id(entity) not in self.states:
            state = state_of(entity)
            self.states[id(entity)] = (entity, state.status, state.session, identity_of(entity))


class Session:
    def __init__(self, factory: SessionFactory) -> None:
        self._factory = factory
        self._storage = factory.storage
        self._graph = factory.graph
        self._identities = factory.identities
        self._cascade = CascadeEngine(self._graph)
        self._identity_map = IdentityMap()
        self._new = IdentitySet()
        self._managed = IdentitySet()
        self._removed = IdentitySet()
        self._snapshot: typing.Optional[_FlushSnapshot] = None
        self._closed = False

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        try:
            if exc_type is None and self._factory.config.flush_on_close:
                self.flush()
        finally:
            self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise GraphOrmError("Session is closed")

    # reading

    def get(self, entity_type: typing.Type[E], entity_id: typing.Any) -> E:
        entity = self.find(entity_type, entity_id)
        if entity is None:
            raise NotFound(entity_type, entity_id)
        return entity

    def find(self, entity_type: typing.Type[E], entity_id: typing.Any) -> typing.Optional[E]:
        self._check_open()
        if entity_id is None:
            return None
        entity = self._identity_map.get(entity_type, entity_id)
        if entity is not None:
            return None if entity in self._removed else entity
        try:
            row = self._storage.get_by_key(self._graph.table_name(entity_type), to_storage(entity_id))
        except NotFound:
            return None
        return self._load(entity_type, row)

    def all(self, entity_type: typing.Type[E]) -> typing.List[E]:
        """Stored entities of a type in key order, followed by the ones registered but not flushed yet."""
        self._check_open()
        loaded = IdentitySet(
            self._load(entity_type, row) for row in self._storage.scan(self._graph.table_name(entity_type))
        )
        pending = [entity for entity in self._new if type(entity) is entity_type and entity not in loaded]
        return [entity for entity in loaded if entity not in self._removed] + pending

    def _load(self, entity_type: type, row: typing.Dict[str, typing.Any]) -> typing.Any:
        entity_id = from_storage(row[entity_type.__identity__], self._graph.identity_type(entity_type))
        existing = self._identity_map.get(entity_type, entity_id)
        if existing is not None:
            # pending in-memory changes win over what the storage holds
            return existing

        fields, foreign_keys = from_row(self._graph, entity_type, row)
        entity = entity_type(**fields)
        state = state_of(entity)
        state.status = Status.MANAGED
        state.session = self
        self._reset_refs(entity, foreign_keys)
        self._identity_map.add(entity)
        self._managed.add(entity)
        state.snapshot = to_row(self._graph, entity)
        logger.debug("Loaded %s %r", entity_type.__name__, entity_id)

        self._fetch_eager(entity)
        return entity

    def _reset_refs(self, entity: typing.Any, foreign_keys: typing.Dict[str, typing.Any]) -> None:
        for relationship in self._graph.relationships(type(entity)).values():
            ref = getattr(entity, relationship.name)
            if relationship.cardinality is Cardinality.TO_ONE:
                ref.mark_unloaded(foreign_keys.get(relationship.name))
            else:
                ref.mark_unloaded()

    def _fetch_eager(self, entity: typing.Any) -> None:
        for relationship in self._graph.relationships(type(entity)).values():
            if relationship.fetch is Fetch.EAGER:
                getattr(entity, relationship.name).materialize()

    def load_relationship(self, owner: typing.Any, relationship: Relationship) -> typing.Any:
        """Fetch the value of an unloaded reference of ``owner``."""
        self._check_open()
        target = relationship.target

        if relationship.is_owning:
            foreign_key = getattr(owner, relationship.name).foreign_key
            if foreign_key is None:
                return None
            # removed targets are returned as well, the flush reports them as dangling
            entity = self._identity_map.get(target, foreign_key)
            # a key matching no row leaves the reference empty
            return entity if entity is not None else self.find(target, foreign_key)

        owner_id = identity_of(owner)
        if owner_id is None:
            return None if relationship.cardinality is Cardinality.TO_ONE else []

        owning = self._graph.counterpart(relationship)
        rows = self._storage.get_by_foreign_key(
            self._graph.table_name(target), self._graph.foreign_key_column(relationship), to_storage(owner_id)
        )
        candidates = IdentitySet(self._load(target, row) for row in rows)
        for entity in itertools.chain(self._identity_map.of_type(target), self._new):
            if type(entity) is target:
                candidates.add(entity)
        related = [
            entity
            for entity in candidates
            if entity not in self._removed and getattr(entity, owning.name).points_to(owner)
        ]

        if relationship.cardinality is Cardinality.TO_ONE:
            return related[0] if related else None
        return related

    # writing

    def persist(self, entity: typing.Any) -> None:
        self._check_open()
        state = state_of(entity)
        if state.session is None and state.status is not Status.TRANSIENT:
            raise EntityNotManaged(entity, f"it is {state.status.value.lower()}, use merge()")
        for reached in self._cascade.schedule(Cascade.PERSIST, entity):
            self._persist_one(reached)
        logger.debug("Scheduled %s for persist", type(entity).__name__)

    def _persist_one(self, entity: typing.Any, cascaded: bool = False) -> None:
        state = state_of(entity)
        if state.session is self:
            if entity in self._removed and not cascaded:
                self._remember(entity)
                self._removed.discard(entity)
                self._managed.add(entity)
                state.status = Status.MANAGED
            return
        if state.session is not None:
            raise EntityNotManaged(entity, "it belongs to another session")
        if state.status is Status.TRANSIENT:
            self._register_new(entity)

    def _register_new(self, entity: typing.Any) -> None:
        entity_type = type(entity)
        entity_id = identity_of(entity)
        if entity_id is not None and self._stored(entity_type, entity_id):
            raise IdentityConflict(
                entity_type, entity_id, f"{entity_type.__name__} id {entity_id!r} is already stored, use merge()"
            )
        self._remember(entity)
        if entity_id is None:
            if self._storage.id_generation is IdGeneration.CLIENT_SEQUENCE:
                self._identities.bind(entity, self._identities.assign_id(entity_type), self._identity_map)
        else:
            self._identity_map.add(entity)
        state = state_of(entity)
        state.status = Status.MANAGED
        state.session = self
        self._new.add(entity)

    def _stored(self, entity_type: type, entity_id: typing.Any) -> bool:
        try:
            self._storage.get_by_key(self._graph.table_name(entity_type), to_storage(entity_id))
        except NotFound:
            return False
        return True

    def merge(self, entity: E) -> E:
        """Copy the state of a detached (or transient) graph onto managed instances.

        Returns the managed counterpart of ``entity``. Relationships cascading
        ``MERGE`` are followed; owning references are re-pointed at managed
        instances.
        """
        self._check_open()
        reached = self._cascade.schedule(Cascade.MERGE, entity)
        merged: typing.Dict[int, typing.Any] = {}
        for source in reached:
            merged[id(source)] = self._merge_one(source)
        for source in reached:
            self._merge_relationships(source, merged[id(source)], merged)
        return merged[id(entity)]

    def _merge_one(self, source: typing.Any) -> typing.Any:
        state = state_of(source)
        if state.session is self:
            if source in self._removed:
                raise EntityNotManaged(source, "it has been removed")
            return source
        if state.session is not None:
            raise EntityNotManaged(source, "it belongs to another session")

        entity_type = type(source)
        entity_id = identity_of(source)
        if entity_id is None:
            self._register_new(source)
            return source

        managed = self.find(entity_type, entity_id)
        if managed is None:
            if self._identity_map.get(entity_type, entity_id) is not None:
                raise EntityNotManaged(source, "it has been removed")
            managed = entity_type(**{field.name: getattr(source, field.name) for field in attr.fields(entity_type)})
            self._register_new(managed)
            return managed

        for field in attr.fields(entity_type):
            if field.name != entity_type.__identity__:
                setattr(managed, field.name, getattr(source, field.name))
        logger.debug("Merged %s %r", entity_type.__name__, entity_id)
        return managed

    def _merge_relationships(self, source: typing.Any, managed: typing.Any, merged: typing.Dict[int, typing.Any]) -> None:
        for relationship in self._graph.relationships(type(source)).values():
            source_ref = getattr(source, relationship.name)
            if not source_ref.is_loaded:
                continue
            target_ref = getattr(managed, relationship.name)

            if relationship.cardinality is Cardinality.TO_MANY:
                if relationship.cascades(Cascade.MERGE):
                    target_ref.set([self._merged(item, merged) for item in source_ref.loaded_items])
                continue

            value = self._merged(source_ref.loaded_value, merged)
            if relationship.is_owning:
                if target_ref.is_loaded and target_ref.loaded_value is value:
                    continue
                if value is not None and target_ref.state is LoadState.UNLOADED and target_ref.points_to(value):
                    continue
                target_ref.set(value)
            elif relationship.cascades(Cascade.MERGE):
                target_ref.set(value)

    def _merged(self, value: typing.Any, merged: typing.Dict[int, typing.Any]) -> typing.Any:
        if value is None:
            return None
        if id(value) in merged:
            return merged[id(value)]
        if state_of(value).session is self or identity_of(value) is None:
            return value
        return self.get(type(value), identity_of(value))

    def remove(self, entity: typing.Any) -> None:
        self._check_open()
        state = state_of(entity)
        if state.session is not self:
            raise EntityNotManaged(entity, "only managed entities can be removed")
        if state.status is Status.REMOVED:
            return
        for reached in self._cascade.schedule(Cascade.REMOVE, entity):
            self._mark_removed(reached)
        logger.debug("Scheduled %s %r for removal", type(entity).__name__, identity_of(entity))

    def _mark_removed(self, entity: typing.Any) -> None:
        state = state_of(entity)
        if state.session is not self or state.status is Status.REMOVED:
            return
        self._remember(entity)
        if entity in self._new:
            # never written, so there is nothing to delete
            self._new.discard(entity)
            if identity_of(entity) is not None:
                self._identity_map.remove(entity)
            state.status = Status.TRANSIENT
            state.session = None
            return
        self._managed.discard(entity)
        self._removed.add(entity)
        state.status = Status.REMOVED

    def flush(self) -> None:
        self._check_open()
        self._begin_snapshot()
        try:
            self._cascade_persist()
            self._check_references()
            inserts = self._dependency_order(list(self._new))
            deletes = list(reversed(self._dependency_order(list(self._removed))))
        except Exception as error:
            pending = self._pending()
            self._restore()
            if isinstance(error, GraphOrmError) and not isinstance(error, StorageError):
                raise
            logger.warning("Flush aborted before writing: %s", error)
            raise FlushFailed(pending, error) from error

        dirty = [entity for entity in self._managed if self._changed(entity)]
        updates: typing.List[typing.Any] = []
        if not inserts and not dirty and not deletes:
            self._finish_flush(inserts, updates, deletes)
            return

        transaction = None
        current = None
        try:
            transaction = self._storage.begin_transaction()
            for current in inserts:
                self._insert(current, transaction)
            # computed after the inserts so references to new rows carry their keys
            updates = [entity for entity in self._managed if self._changed(entity)]
            for current in updates:
                self._storage.write(
                    self._graph.table_name(type(current)), to_row(self._graph, current), transaction
                )
            for current in deletes:
                self._storage.delete(
                    self._graph.table_name(type(current)), to_storage(identity_of(current)), transaction
                )
            current = None
            self._storage.commit(transaction)
        except Exception as error:
            self._rollback(transaction)
            self._restore()
            offending = current if current is not None else (inserts + dirty + deletes)[0]
            logger.warning("Flush rolled back at %s: %s", type(offending).__name__, error)
            raise FlushFailed(offending, error) from error

        self._finish_flush(inserts, updates, deletes)

    def _pending(self) -> typing.Any:
        """First entity with a pending change, removals first."""
        return next(itertools.chain(self._removed, self._new, self._managed), None)

    def _cascade_persist(self) -> None:
        reached = IdentitySet()
        for root in itertools.chain(self._new, self._managed):
            if root in reached:
                continue
            for entity in self._cascade.schedule(Cascade.PERSIST, root):
                reached.add(entity)
                self._persist_one(entity, cascaded=True)

    def _check_references(self) -> None:
        for entity in itertools.chain(self._new, self._managed):
            for relationship in self._graph.relationships(type(entity)).values():
                ref = getattr(entity, relationship.name)
                if relationship.is_owning:
                    self._check_owning(entity, ref)
                elif ref.modified:
                    self._check_inverse(entity, ref)
        for entity in self._removed:
            self._check_stored_references(entity)

    def _check_owning(self, entity: typing.Any, ref: RelationshipRef) -> None:
        target = self._referenced(ref)
        target_name = ref.relationship.target.__name__
        if target is None:
            if ref.state is LoadState.EMPTY and ref.target_id() is None and not ref.relationship.nullable:
                raise DanglingReference(entity, ref.name, "is required")
            return
        target_state = state_of(target)
        if target in self._removed or target_state.status is Status.REMOVED:
            raise DanglingReference(entity, ref.name, f"references a removed {target_name}")
        if target_state.session is None and identity_of(target) is None:
            raise DanglingReference(
                entity, ref.name, f"references a transient {target_name} that is neither persisted nor cascaded"
            )
        if target_state.session not in (None, self):
            raise DanglingReference(entity, ref.name, f"references a {target_name} of another session")

    def _check_inverse(self, entity: typing.Any, ref: RelationshipRef) -> None:
        owning = ref.relationship.counterpart
        target_name = ref.relationship.target.__name__
        if ref.relationship.cardinality is Cardinality.TO_ONE:
            value = ref.loaded_value
            if value is not None and value not in self._removed and not getattr(value, owning).points_to(entity):
                raise DanglingReference(
                    entity, ref.name, f"{target_name}.{owning} does not point back, set it or use sync=True"
                )
            return

        for item in ref.loaded_items:
            if item not in self._removed and not getattr(item, owning).points_to(entity):
                raise DanglingReference(
                    entity, ref.name, f"holds a {target_name} whose {owning} does not point back, set it or use sync=True"
                )
        for item in ref.discarded:
            if item not in self._removed and getattr(item, owning).points_to(entity):
                raise DanglingReference(
                    entity, ref.name, f"dropped a {target_name} whose {owning} still points here"
                )

    def _check_stored_references(self, entity: typing.Any) -> None:
        entity_id = identity_of(entity)
        for relationship in self._graph.incoming(type(entity)):
            referencing_type = relationship.owner
            rows = self._storage.get_by_foreign_key(
                self._graph.table_name(referencing_type),
                self._graph.foreign_key_column(relationship),
                to_storage(entity_id),
            )
            for row in rows:
                referencing_id = from_storage(
                    row[referencing_type.__identity__], self._graph.identity_type(referencing_type)
                )
                referencing = self._identity_map.get(referencing_type, referencing_id)
                if referencing is not None and (
                    referencing in self._removed or not getattr(referencing, relationship.name).points_to(entity)
                ):
                    continue
                raise DanglingReference(
                    entity,
                    relationship.counterpart or relationship.name,
                    f"stored {referencing_type.__name__} {referencing_id!r} still references it "
                    f"through {referencing_type.__name__}.{relationship.name}",
                )

    def _referenced(self, ref: RelationshipRef) -> typing.Any:
        if ref.state is LoadState.UNLOADED:
            return self._identity_map.get(ref.relationship.target, ref.foreign_key)
        return ref.loaded_value

    def _dependency_order(self, entities: typing.List[typing.Any]) -> typing.List[typing.Any]:
        """Referenced entities before the ones holding their foreign keys."""
        members = IdentitySet(entities)
        ordered: typing.List[typing.Any] = []
        placed = IdentitySet()
        remaining = entities
        while remaining:
            ready = [
                entity
                for entity in remaining
                if all(dependency in placed for _, dependency in self._dependencies(entity, members))
            ]
            if not ready:
                entity = remaining[0]
                name, dependency = next(
                    (name, dependency) for name, dependency in self._dependencies(entity, members)
                    if dependency not in placed
                )
                raise DanglingReference(
                    entity, name, f"foreign keys form a cycle through {type(dependency).__name__}"
                )
            for entity in ready:
                ordered.append(entity)
                placed.add(entity)
            remaining = [entity for entity in remaining if entity not in placed]
        return ordered

    def _dependencies(
        self, entity: typing.Any, members: IdentitySet
    ) -> typing.Iterator[typing.Tuple[str, typing.Any]]:
        for relationship in self._graph.owning(type(entity)):
            referenced = self._referenced(getattr(entity, relationship.name))
            if referenced is not None and referenced is not entity and referenced in members:
                yield relationship.name, referenced

    def _insert(self, entity: typing.Any, transaction: typing.Any) -> None:
        entity_type = type(entity)
        key = self._storage.write(
            self._graph.table_name(entity_type), to_row(self._graph, entity), transaction, insert=True
        )
        if identity_of(entity) is None:
            self._identities.bind(
                entity, from_storage(key, self._graph.identity_type(entity_type)), self._identity_map
            )

    def _changed(self, entity: typing.Any) -> bool:
        return to_row(self._graph, entity) != state_of(entity).snapshot

    def _rollback(self, transaction: typing.Any) -> None:
        if transaction is None:
            return
        try:
            self._storage.rollback(transaction)
        except Exception:
            logger.exception("Rolling back the storage transaction failed")

    def _begin_snapshot(self) -> None:
        snapshot = _FlushSnapshot(
            self._new.copy(), self._managed.copy(), self._removed.copy(), self._identity_map.copy()
        )
        for entity in itertools.chain(self._new, self._managed, self._removed):
            snapshot.remember(entity)
        self._snapshot = snapshot

    def _remember(self, entity: typing.Any) -> None:
        if self._snapshot is not None:
            self._snapshot.remember(entity)

    def _restore(self) -> None:
        snapshot, self._snapshot = self._snapshot, None
        self._new = snapshot.new
        self._managed = snapshot.managed
        self._removed = snapshot.removed
        self._identity_map = snapshot.identity_map
        for entity, status, session, entity_id in snapshot.states.values():
            state = state_of(entity)
            state.status = status
            state.session = session
            if identity_of(entity) != entity_id:
                # ids are immutable through normal assignment
                object.__setattr__(entity, type(entity).__identity__, entity_id)

    def _finish_flush(self, inserts: typing.List[typing.Any], updates: typing.List[typing.Any], deletes: typing.List[typing.Any]) -> None:
        for entity in inserts:
            self._new.discard(entity)
            self._managed.add(entity)
        for entity in deletes:
            self._removed.discard(entity)
            self._identity_map.remove(entity)
            state = state_of(entity)
            state.status = Status.DETACHED
            state.session = None
        for entity in self._managed:
            state = state_of(entity)
            state.snapshot = to_row(self._graph, entity)
            for ref in state.refs.values():
                ref.flushed()
        self._snapshot = None
        if inserts or updates or deletes:
            logger.info("Flushed %d inserts, %d updates, %d deletes", len(inserts), len(updates), len(deletes))

    # bookkeeping

    def refresh(self, entity: typing.Any) -> None:
        """Reload fields and foreign keys from storage, dropping in-memory changes."""
        self._check_open()
        state = state_of(entity)
        if state.session is not self or entity in self._new or entity in self._removed:
            raise EntityNotManaged(entity, "only stored, managed entities can be refreshed")
        entity_type = type(entity)
        entity_id = identity_of(entity)
        try:
            row = self._storage.get_by_key(self._graph.table_name(entity_type), to_storage(entity_id))
        except NotFound:
            raise NotFound(entity_type, entity_id) from None

        fields, foreign_keys = from_row(self._graph, entity_type, row)
        for name, value in fields.items():
            if name != entity_type.__identity__:
                setattr(entity, name, value)
        self._reset_refs(entity, foreign_keys)
        state.snapshot = to_row(self._graph, entity)
        self._fetch_eager(entity)

    def detach(self, entity: typing.Any) -> None:
        state = state_of(entity)
        if state.session is not self:
            return
        was_new = entity in self._new
        self._new.discard(entity)
        self._managed.discard(entity)
        self._removed.discard(entity)
        self._identity_map.remove(entity)
        state.session = None
        state.status = Status.TRANSIENT if was_new else Status.DETACHED

    def close(self) -> None:
        if self._closed:
            return
        for entity in itertools.chain(self._new, self._managed, self._removed):
            self.detach(entity)
        self._closed = True
        logger.debug("Session closed")

    def is_dirty(self, entity: typing.Any) -> bool:
        state = state_of(entity)
        if state.session is not self:
            return False
        if entity in self._new or entity in self._removed:
            return True
        return self._changed(entity) or any(ref.modified for ref in state.refs.values())

    def contains(self, entity: typing.Any) -> bool:
        return state_of(entity).session is self and entity not in self._removed
