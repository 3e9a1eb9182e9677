import decimal
import enum
import typing
import uuid
from functools import singledispatch


@singledispatch
def to_storage(argument: typing.Any) -> typing.Any:
    return argument


@to_storage.register(uuid.UUID)
def _(argument: uuid.UUID) -> str:
    return str(argument)


@to_storage.register(enum.Enum)
def _(argument: enum.Enum) -> typing.Any:
    return argument.value


mapping = {uuid.UUID: uuid.UUID, decimal.Decimal: lambda value: decimal.Decimal(str(value))}


def from_storage(argument: typing.Any, field_type: typing.Type) -> typing.Any:
    if argument is None or isinstance(argument, field_type):
        return argument
    if isinstance(field_type, type) and issubclass(field_type, enum.Enum):
        return field_type(argument)

    try:
        return mapping[field_type](argument)
    except KeyError:
        return argument
