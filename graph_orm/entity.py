import abc
import inspect
import typing

import attr

from graph_orm.exceptions import IdentityConflict
from graph_orm.relationships import Relationship, declared_relationships
from graph_orm.state import Status, identity_of, state_of


class EntityWithoutIdentity(TypeError):
    pass


class CompositeIdentity(TypeError):
    pass


class ValueObjectWithIdentity(TypeError):
    pass


class EntityNestedInValueObject(TypeError):
    pass


T = typing.TypeVar("T")


class Identity(typing.Generic[T]):
    @classmethod
    def is_identity(cls, field: attr.Attribute) -> bool:
        return _is_identity_type(field.type)


def _is_identity_type(field_type: typing.Any) -> bool:
    return getattr(field_type, "__origin__", None) is Identity


def _guard_identity(instance: typing.Any, attribute: attr.Attribute, value: typing.Any) -> typing.Any:
    current = getattr(instance, attribute.name, None)
    if current is not None and value != current:
        raise IdentityConflict(type(instance), current, f"{type(instance).__name__} id is immutable once assigned")
    return value


class EntityMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "Entity":
            return cls
        identities = [
            field_name
            for field_name, field_type in inspect.get_annotations(cls).items()
            if _is_identity_type(field_type)
        ]
        if not identities:
            raise EntityWithoutIdentity(f"{name} declares no Identity[...] field")
        if len(identities) > 1:
            raise CompositeIdentity(f"{name} declares more than one identity: {', '.join(identities)}")

        # transient until a session assigns it
        setattr(cls, identities[0], attr.ib(default=None, on_setattr=_guard_identity))
        attr_cls = attr.s(auto_attribs=True, kw_only=True, eq=False)(cls)
        attr_cls.__identity__ = identities[0]
        attr_cls.__relationships__ = declared_relationships(attr_cls)
        return attr_cls


class Entity(metaclass=EntityMeta):
    __identity__: typing.ClassVar[str]
    __relationships__: typing.ClassVar[typing.Dict[str, Relationship]]


class ValueObjectMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "ValueObject":
            return cls
        attr_cls = attr.s(auto_attribs=True, kw_only=True)(cls)
        fields = attr.fields(attr_cls)
        if any(Identity.is_identity(field) for field in fields):
            raise ValueObjectWithIdentity
        if any(_is_nested_entity(field.type) for field in fields):
            raise EntityNestedInValueObject
        return attr_cls


def _is_nested_entity(field_type: typing.Type) -> bool:
    try:
        return issubclass(field_type, Entity)
    except TypeError:
        return any(_is_nested_entity(arg) for arg in typing.get_args(field_type))


class ValueObject(metaclass=ValueObjectMeta):
    pass


def status_of(entity: Entity) -> Status:
    return state_of(entity).status


__all__ = [
    "Entity",
    "ValueObject",
    "Identity",
    "EntityWithoutIdentity",
    "CompositeIdentity",
    "ValueObjectWithIdentity",
    "EntityNestedInValueObject",
    "identity_of",
    "status_of",
]
