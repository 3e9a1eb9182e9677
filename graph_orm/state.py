import enum
import typing

import attr


class Status(enum.Enum):
    TRANSIENT = "TRANSIENT"
    MANAGED = "MANAGED"
    REMOVED = "REMOVED"
    DETACHED = "DETACHED"


@attr.s(auto_attribs=True)
class EntityState:
    """Bookkeeping attached to every entity instance, never part of its fields."""

    status: Status = Status.TRANSIENT
    session: typing.Any = None
    refs: typing.Dict[str, typing.Any] = attr.Factory(dict)
    # row as of the last load or flush, in storage representation
    snapshot: typing.Optional[typing.Dict[str, typing.Any]] = None

    @property
    def is_live(self) -> bool:
        return self.session is not None and self.status is Status.MANAGED


STATE_ATTRIBUTE = "__orm_state__"


def identity_of(entity: typing.Any) -> typing.Any:
    return getattr(entity, type(entity).__identity__)


def key_of(entity: typing.Any) -> typing.Tuple[typing.Any, typing.Any]:
    """Identity-map key: (type, id), or object identity while the entity has no id yet."""
    entity_id = identity_of(entity)
    if entity_id is None:
        return type(entity), ("transient", id(entity))
    return type(entity), entity_id


def state_of(entity: typing.Any) -> EntityState:
    state = entity.__dict__.get(STATE_ATTRIBUTE)
    if state is None:
        state = EntityState()
        entity.__dict__[STATE_ATTRIBUTE] = state
    return state
