import enum
import typing

from graph_orm.exceptions import SchemaInconsistency
from graph_orm.lazy import RelationshipRef, ToManyRef, ToOneRef
from graph_orm.state import state_of


class Cardinality(enum.Enum):
    TO_ONE = "TO_ONE"
    TO_MANY = "TO_MANY"


class Ownership(enum.Enum):
    OWNING = "OWNING"
    INVERSE = "INVERSE"


class Cascade(enum.Enum):
    PERSIST = "PERSIST"
    MERGE = "MERGE"
    REMOVE = "REMOVE"


ALL = frozenset(Cascade)


class Fetch(enum.Enum):
    EAGER = "EAGER"
    LAZY = "LAZY"


CascadeSpec = typing.Union[Cascade, typing.Iterable[Cascade]]


def _normalize_cascade(cascade: typing.Optional[CascadeSpec]) -> typing.FrozenSet[Cascade]:
    if cascade is None:
        return frozenset()
    if isinstance(cascade, Cascade):
        return frozenset([cascade])
    return frozenset(cascade)


class Relationship:
    """Declaration of a relationship on an entity class.

    Used as a class attribute; on instances it resolves to the instance's
    ``RelationshipRef``. ``mapped_by`` names the owning field on the target and
    makes this side the inverse one. ``back_populates`` names the inverse field
    on the target for an owning side.
    """

    cardinality: Cardinality
    default_fetch: Fetch
    ref_class: typing.Type[RelationshipRef]

    def __init__(
        self,
        target: typing.Union[str, type],
        *,
        mapped_by: typing.Optional[str] = None,
        back_populates: typing.Optional[str] = None,
        ownership: typing.Optional[Ownership] = None,
        cascade: typing.Optional[CascadeSpec] = None,
        fetch: typing.Optional[Fetch] = None,
        nullable: bool = True,
    ) -> None:
        if mapped_by and back_populates:
            raise SchemaInconsistency("Use either mapped_by or back_populates, not both")
        self.target = target
        if ownership is None:
            ownership = Ownership.INVERSE if mapped_by else Ownership.OWNING
        self.ownership = ownership
        self.counterpart = mapped_by or back_populates
        self.cascade = _normalize_cascade(cascade)
        self.fetch = fetch or self.default_fetch
        self.nullable = nullable
        self.name: typing.Optional[str] = None
        self.owner: typing.Optional[type] = None

    @property
    def target_name(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.__name__

    @property
    def is_owning(self) -> bool:
        return self.ownership is Ownership.OWNING

    def cascades(self, operation: Cascade) -> bool:
        return operation in self.cascade

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: typing.Any, owner: typing.Optional[type] = None) -> typing.Any:
        if instance is None:
            return self
        refs = state_of(instance).refs
        ref = refs.get(self.name)
        if ref is None:
            ref = refs[self.name] = self.ref_class(instance, self)
        return ref

    def __set__(self, instance: typing.Any, value: typing.Any) -> None:
        self.__get__(instance).set(value)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.target_name!r}, {self.ownership.value}, "
            f"cascade={sorted(c.value for c in self.cascade)}, fetch={self.fetch.value})"
        )


class ToOne(Relationship):
    cardinality = Cardinality.TO_ONE
    default_fetch = Fetch.EAGER
    ref_class = ToOneRef


class ToMany(Relationship):
    cardinality = Cardinality.TO_MANY
    default_fetch = Fetch.LAZY
    ref_class = ToManyRef


def declared_relationships(cls: type) -> typing.Dict[str, Relationship]:
    found: typing.Dict[str, Relationship] = {}
    for klass in reversed(cls.__mro__):
        for name, value in vars(klass).items():
            if isinstance(value, Relationship):
                found[name] = value
    return found
