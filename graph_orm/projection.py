"""Request and response shapes for the API boundary.

DTOs are frozen, keyword-only attrs classes that may hold scalars, value
objects, nested DTOs and lists of DTOs, never an entity or a relationship
reference. ``to_response`` copies exactly the fields a DTO declares;
``from_request`` and ``apply_request`` only ever touch those fields on the
entity side, and never its id.
"""
import abc
import datetime
import decimal
import enum
import inspect
import typing
import uuid
from functools import singledispatch

import attr

from graph_orm.abstract_entity_tree import _is_field_optional, _is_list, _unwrap_optional
from graph_orm.entity import Entity, ValueObject, _is_nested_entity
from graph_orm.exceptions import ProjectionError
from graph_orm.lazy import RelationshipRef, ToManyRef, ToOneRef

PROJECTION_PATH = "graph_orm.projection.path"


class EntityNestedInDto(TypeError):
    pass


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# marks request fields the caller left out; they are not applied
UNSET: typing.Any = _Unset()


def projected(path: str, **kwargs: typing.Any) -> typing.Any:
    """DTO field sourced from a dotted path on the entity, e.g. ``projected("member.name")``."""
    metadata = dict(kwargs.pop("metadata", {}), **{PROJECTION_PATH: path})
    return attr.ib(metadata=metadata, **kwargs)


def _is_relationship_ref(field_type: typing.Any) -> bool:
    if isinstance(field_type, type):
        return issubclass(field_type, RelationshipRef)
    return any(_is_relationship_ref(arg) for arg in typing.get_args(field_type))


class DtoMeta(abc.ABCMeta):
    def __new__(mcs, name: str, bases: tuple, namespace: dict):
        cls = super().__new__(mcs, name, bases, namespace)
        if name == "Dto":
            return cls
        attr_cls = attr.s(auto_attribs=True, frozen=True, kw_only=True)(cls)
        for field in attr.fields(attr_cls):
            if _is_nested_entity(field.type) or _is_relationship_ref(field.type):
                raise EntityNestedInDto(f"{name}.{field.name} exposes {field.type}")
        return attr_cls


class Dto(metaclass=DtoMeta):
    pass


def _is_dto(field_type: typing.Any) -> bool:
    return isinstance(field_type, type) and issubclass(field_type, Dto)


def _strip_optional(field_type: typing.Any) -> typing.Any:
    return _unwrap_optional(field_type) if _is_field_optional(field_type) else field_type


# entity -> response


def to_response(source: typing.Any, dto_type: typing.Type[Dto]) -> Dto:
    """Project an entity (or a value object) onto ``dto_type``.

    Relationships named by the DTO are materialized; everything else on the
    entity stays behind.
    """
    values = {}
    for field in attr.fields(dto_type):
        path = field.metadata.get(PROJECTION_PATH, field.name)
        value = _resolve(source, path, dto_type, field.name)
        values[field.name] = _project(value, field.type, dto_type, field.name)
    return dto_type(**values)


def _resolve(source: typing.Any, path: str, dto_type: type, field_name: str) -> typing.Any:
    current = source
    for part in path.split("."):
        if current is None:
            return None
        try:
            current = getattr(current, part)
        except AttributeError:
            raise ProjectionError(
                f"{dto_type.__name__}.{field_name}: {type(current).__name__} has no attribute {part!r}"
            ) from None
        if isinstance(current, ToOneRef):
            current = current.get()
        elif isinstance(current, ToManyRef):
            current = current.all()
        elif inspect.ismethod(current):
            current = current()
    return current


def _project(value: typing.Any, field_type: typing.Any, dto_type: type, field_name: str) -> typing.Any:
    if value is None:
        return None
    field_type = _strip_optional(field_type)
    if _is_dto(field_type):
        return to_response(value, field_type)
    if _is_list(field_type):
        (item_type,) = typing.get_args(field_type) or (typing.Any,)
        return [_project(item, item_type, dto_type, field_name) for item in value]
    if isinstance(value, Entity):
        raise ProjectionError(f"{dto_type.__name__}.{field_name} would expose a {type(value).__name__} entity")
    # unparameterized containers are checked item by item
    if isinstance(value, (list, tuple, set, frozenset)):
        return type(value)(_project(item, typing.Any, dto_type, field_name) for item in value)
    if isinstance(value, dict):
        return {key: _project(item, typing.Any, dto_type, field_name) for key, item in value.items()}
    return value


# request -> entity


def _request_values(dto: Dto, entity_type: type) -> typing.Iterator[typing.Tuple[str, typing.Any]]:
    entity_fields = attr.fields_dict(entity_type)
    for field in attr.fields(type(dto)):
        if field.name == entity_type.__identity__:
            raise ProjectionError(f"{type(dto).__name__} carries the {entity_type.__name__} id, ids are server-assigned")
        if field.name not in entity_fields:
            raise ProjectionError(f"{type(dto).__name__}.{field.name} is not a field of {entity_type.__name__}")
        value = getattr(dto, field.name)
        if value is UNSET:
            continue
        yield field.name, _to_entity_value(value, entity_fields[field.name].type)


def _to_entity_value(value: typing.Any, field_type: typing.Any) -> typing.Any:
    field_type = _strip_optional(field_type)
    if isinstance(value, Dto) and isinstance(field_type, type) and issubclass(field_type, ValueObject):
        return field_type(**{field.name: getattr(value, field.name) for field in attr.fields(field_type)})
    return value


def from_request(dto: Dto, entity_type: typing.Type[Entity]) -> Entity:
    """New transient entity built from the whitelisted fields of a request DTO."""
    values = dict(_request_values(dto, entity_type))
    try:
        return entity_type(**values)
    except TypeError as error:
        raise ProjectionError(f"{type(dto).__name__} cannot build a {entity_type.__name__}: {error}") from error


def apply_request(dto: Dto, entity: Entity) -> typing.Dict[str, typing.Any]:
    """Copy the fields set on ``dto`` onto ``entity``. Returns what actually changed."""
    changes = {}
    for name, value in _request_values(dto, type(entity)):
        if getattr(entity, name) != value:
            setattr(entity, name, value)
            changes[name] = value
    return changes


# wire


@singledispatch
def _serialize(value: typing.Any) -> typing.Any:
    return value


@_serialize.register(uuid.UUID)
@_serialize.register(decimal.Decimal)
def _(value: typing.Any) -> str:
    return str(value)


@_serialize.register(enum.Enum)
def _(value: enum.Enum) -> typing.Any:
    return value.value


@_serialize.register(datetime.date)
def _(value: datetime.date) -> str:
    return value.isoformat()


def as_dict(dto: Dto) -> typing.Dict[str, typing.Any]:
    return attr.asdict(
        dto,
        recurse=True,
        filter=lambda field, value: value is not UNSET,
        value_serializer=lambda instance, field, value: _serialize(value),
    )


__all__ = [
    "Dto",
    "EntityNestedInDto",
    "UNSET",
    "projected",
    "to_response",
    "from_request",
    "apply_request",
    "as_dict",
]
