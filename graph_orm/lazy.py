"""Relationship references and their load state machine.

A reference never stands in for the related object: callers go through an
explicit accessor (``get()`` for single-valued relationships, iteration or
``all()`` for collections). Whether the value is already in memory is visible
through ``ref.state``::

    UNLOADED -> LOADING -> LOADED | EMPTY

Loading is delegated to the session that manages the owning entity.
"""
import enum
import logging
import typing

from graph_orm.exceptions import ReentrantLoad, StaleReferenceAccess
from graph_orm.state import Status, identity_of, state_of

logger = logging.getLogger(__name__)


class LoadState(enum.Enum):
    UNLOADED = "UNLOADED"
    LOADING = "LOADING"
    LOADED = "LOADED"
    EMPTY = "EMPTY"


class RelationshipRef:
    initial_state = LoadState.EMPTY

    def __init__(self, owner: typing.Any, relationship: typing.Any) -> None:
        self.owner = owner
        self.relationship = relationship
        self.state = self.initial_state
        # set by writes through the inverse side, cleared by flush
        self.modified = False

    @property
    def name(self) -> str:
        return self.relationship.name

    @property
    def is_loaded(self) -> bool:
        return self.state in (LoadState.LOADED, LoadState.EMPTY)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {type(self.owner).__name__}.{self.name} {self.state.value}>"

    def _check_access(self) -> None:
        status = state_of(self.owner).status
        if status is Status.REMOVED:
            raise StaleReferenceAccess(self.owner, self.name, "removed")
        if self.state is LoadState.UNLOADED and status is Status.DETACHED:
            raise StaleReferenceAccess(self.owner, self.name, "detached")

    def _check_writable(self) -> None:
        if state_of(self.owner).status is Status.REMOVED:
            raise StaleReferenceAccess(self.owner, self.name, "removed")

    def materialize(self) -> None:
        """Load the value if it is not in memory yet. At most one fetch per reference."""
        if self.state is LoadState.LOADING:
            raise ReentrantLoad(self.owner, self.name)
        if self.state is not LoadState.UNLOADED:
            return

        session = state_of(self.owner).session
        if session is None:
            raise StaleReferenceAccess(self.owner, self.name, "detached")

        self.state = LoadState.LOADING
        try:
            value = session.load_relationship(self.owner, self.relationship)
        except BaseException:
            self.state = LoadState.UNLOADED
            raise
        self._loaded(value)
        logger.debug("Loaded %r", self)

    def _loaded(self, value: typing.Any) -> None:
        raise NotImplementedError

    def _counterpart_ref(self, other: typing.Any) -> typing.Optional["RelationshipRef"]:
        counterpart = self.relationship.counterpart
        if other is None or counterpart is None:
            return None
        return getattr(other, counterpart)

    def _prepare_counterpart(self, other_ref: "RelationshipRef") -> bool:
        # the inverse side of a stored entity may still be unloaded; it is derived from the
        # owning side, so it is only kept in step when it can be brought into memory
        if other_ref.state is LoadState.UNLOADED:
            if not state_of(other_ref.owner).is_live:
                return False
            other_ref.materialize()
        return True


class ToOneRef(RelationshipRef):
    initial_state = LoadState.EMPTY

    def __init__(self, owner: typing.Any, relationship: typing.Any) -> None:
        super().__init__(owner, relationship)
        self._value: typing.Any = None
        # target id as read from storage, owning side only
        self.foreign_key: typing.Any = None

    def get(self) -> typing.Any:
        self._check_access()
        self.materialize()
        return self._value

    def set(self, value: typing.Any, sync: bool = False) -> None:
        self._check_writable()
        if sync:
            if self.state is LoadState.UNLOADED and state_of(self.owner).is_live:
                self.materialize()
            previous = self._value if self.is_loaded else None
            if previous is value:
                return
            self._unlink(previous)
            self._assign(value)
            self._link(value)
        else:
            self._assign(value)

    @property
    def loaded_value(self) -> typing.Any:
        return self._value if self.state is LoadState.LOADED else None

    def points_to(self, entity: typing.Any) -> bool:
        if self.state is LoadState.LOADED:
            return self._value is entity
        if self.state in (LoadState.UNLOADED, LoadState.LOADING):
            entity_id = identity_of(entity)
            return entity_id is not None and self.foreign_key == entity_id
        return False

    def target_id(self) -> typing.Any:
        """Foreign key value this reference writes, in the target's identity type."""
        if self.state is LoadState.UNLOADED:
            return self.foreign_key
        if self.state is LoadState.LOADED:
            return identity_of(self._value)
        # a stored key whose row is gone stays as it is until the reference is reassigned
        return None if self.modified else self.foreign_key

    def _assign(self, value: typing.Any) -> None:
        self._value = value
        self.state = LoadState.LOADED if value is not None else LoadState.EMPTY
        self.modified = True

    def _loaded(self, value: typing.Any) -> None:
        self._value = value
        self.state = LoadState.LOADED if value is not None else LoadState.EMPTY

    def mark_unloaded(self, foreign_key: typing.Any = None) -> None:
        self._value = None
        self.foreign_key = foreign_key
        self.modified = False
        if self.relationship.is_owning and foreign_key is None:
            self.state = LoadState.EMPTY
        else:
            self.state = LoadState.UNLOADED

    def flushed(self) -> None:
        if self.state is LoadState.LOADED:
            self.foreign_key = identity_of(self._value)
        elif self.state is LoadState.EMPTY and self.modified:
            self.foreign_key = None
        self.modified = False

    def _unlink(self, previous: typing.Any) -> None:
        other_ref = self._counterpart_ref(previous)
        if other_ref is None or not self._prepare_counterpart(other_ref):
            return
        if isinstance(other_ref, ToManyRef):
            other_ref._discard(self.owner)
        elif other_ref.loaded_value is self.owner:
            other_ref._assign(None)

    def _link(self, value: typing.Any) -> None:
        other_ref = self._counterpart_ref(value)
        if other_ref is None or not self._prepare_counterpart(other_ref):
            return
        if isinstance(other_ref, ToManyRef):
            other_ref._append(self.owner)
        else:
            # one-to-one: whatever the new target pointed at loses its back reference
            displaced = other_ref.loaded_value
            if displaced is not None and displaced is not self.owner:
                displaced_ref = getattr(displaced, self.name)
                if displaced_ref.loaded_value is value:
                    displaced_ref._assign(None)
            other_ref._assign(self.owner)


class ToManyRef(RelationshipRef):
    initial_state = LoadState.EMPTY

    def __init__(self, owner: typing.Any, relationship: typing.Any) -> None:
        super().__init__(owner, relationship)
        self._items: typing.List[typing.Any] = []
        # members dropped from the collection since the last flush
        self.discarded: typing.List[typing.Any] = []

    def __iter__(self) -> typing.Iterator[typing.Any]:
        return iter(self.all())

    def __len__(self) -> int:
        return len(self.all())

    def __contains__(self, item: typing.Any) -> bool:
        return any(existing is item for existing in self.all())

    def all(self) -> typing.List[typing.Any]:
        self._check_access()
        self.materialize()
        return list(self._items)

    @property
    def loaded_items(self) -> typing.List[typing.Any]:
        return list(self._items) if self.state is LoadState.LOADED else []

    def add(self, item: typing.Any, sync: bool = False) -> None:
        self._check_writable()
        self.materialize()
        if sync:
            # moves the item out of any other collection it belonged to
            self._owning_ref(item).set(self.owner, sync=True)
        self._append(item)
        self._forget_discard(item)

    def remove(self, item: typing.Any, sync: bool = False) -> None:
        self._check_writable()
        self.materialize()
        if not any(existing is item for existing in self._items):
            return
        if sync:
            owning = self._owning_ref(item)
            if owning.points_to(self.owner):
                owning.set(None, sync=True)
        self._discard(item)

    def set(self, items: typing.Iterable[typing.Any], sync: bool = False) -> None:
        self._check_writable()
        self.materialize()
        items = list(items)
        for existing in list(self._items):
            if not any(existing is item for item in items):
                self.remove(existing, sync=sync)
        for item in items:
            self.add(item, sync=sync)

    def _owning_ref(self, item: typing.Any) -> ToOneRef:
        return getattr(item, self.relationship.counterpart)

    def _append(self, item: typing.Any) -> None:
        if not any(existing is item for existing in self._items):
            self._items.append(item)
            self.modified = True
            self._settle()

    def _discard(self, item: typing.Any) -> None:
        for index, existing in enumerate(self._items):
            if existing is item:
                del self._items[index]
                self.discarded.append(item)
                self.modified = True
                self._settle()
                return

    def _forget_discard(self, item: typing.Any) -> None:
        self.discarded = [existing for existing in self.discarded if existing is not item]

    def _loaded(self, value: typing.Any) -> None:
        self._items = list(value)
        self._settle()

    def _settle(self) -> None:
        self.state = LoadState.LOADED if self._items else LoadState.EMPTY

    def mark_unloaded(self) -> None:
        self._items = []
        self.discarded = []
        self.modified = False
        self.state = LoadState.UNLOADED

    def flushed(self) -> None:
        self.modified = False
        self.discarded = []
