import typing

from graph_orm.session import Session


EntityType = typing.TypeVar("EntityType")
IdentityType = typing.TypeVar("IdentityType")


class ReadOnlyRepository(typing.Generic[EntityType, IdentityType]):
    """Per-entity view over a session.

    Subclasses name their entity through the generic arguments::

        class MemberRepository(Repository[Member, int]):
            ...
    """

    entity: typing.ClassVar[type]

    def __init_subclass__(cls, **kwargs: typing.Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in getattr(cls, "__orig_bases__", ()):
            args = typing.get_args(base)
            if args and isinstance(args[0], type):
                cls.entity = args[0]
                break

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, identity: IdentityType) -> EntityType:
        return self._session.get(self.entity, identity)

    def find(self, identity: IdentityType) -> typing.Optional[EntityType]:
        return self._session.find(self.entity, identity)

    def all(self) -> typing.List[EntityType]:
        return self._session.all(self.entity)

    def find_by(self, **criteria: typing.Any) -> typing.List[EntityType]:
        # TODO: push equality criteria down to the storage instead of scanning the table
        return [
            entity
            for entity in self.all()
            if all(getattr(entity, name) == value for name, value in criteria.items())
        ]


class Repository(ReadOnlyRepository[EntityType, IdentityType]):
    def save(self, entity: EntityType) -> EntityType:
        self._session.persist(entity)
        return entity

    def remove(self, entity: EntityType) -> None:
        self._session.remove(entity)
