import decimal
import enum
import uuid
import typing
from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, String


mapping = {
    int: Integer,
    str: String(255),
    uuid.UUID: String(36),
    float: Float,
    bool: Boolean,
    decimal.Decimal: Numeric(19, 4),
    datetime: DateTime,
    date: Date,
}


def convert(arg: typing.Type) -> typing.Any:
    if isinstance(arg, type) and issubclass(arg, enum.Enum):
        # enums are stored by value
        return String(64)
    try:
        return mapping[arg]
    except KeyError:
        raise TypeError(f"Unsupported type - {arg}")
