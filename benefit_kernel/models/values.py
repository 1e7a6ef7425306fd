"""Typed values — the closed set of comparable profile and criterion values."""

from datetime import date, datetime, timezone
from typing import Annotated, List, Literal, Union

from pydantic import AfterValidator, BaseModel, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


def utc_now() -> datetime:
    """Current UTC time, for callers that do not supply an explicit instant."""
    return datetime.now(timezone.utc)


class NumberValue(BaseModel):
    kind: Literal["number"] = "number"
    value: float


class StringValue(BaseModel):
    kind: Literal["string"] = "string"
    value: str


class DateValue(BaseModel):
    kind: Literal["date"] = "date"
    value: date


class StringSetValue(BaseModel):
    kind: Literal["string_set"] = "string_set"
    value: List[str] = []

    @field_validator("value")
    @classmethod
    def normalize_members(cls, v: List[str]) -> List[str]:
        # Stored sorted and unique so serialized results stay byte-stable
        return sorted(set(v))


TypedValue = Annotated[
    Union[NumberValue, StringValue, DateValue, StringSetValue],
    Field(discriminator="kind"),
]


def number(value: float) -> NumberValue:
    return NumberValue(value=value)


def string(value: str) -> StringValue:
    return StringValue(value=value)


def on_date(value: date) -> DateValue:
    return DateValue(value=value)


def string_set(*members: str) -> StringSetValue:
    return StringSetValue(value=list(members))


def describe(value: TypedValue) -> str:
    """Render a typed value for human-readable failure reasons."""
    if isinstance(value, StringSetValue):
        return "{" + ", ".join(value.value) + "}"
    if isinstance(value, NumberValue):
        return f"{value.value:g}"
    if isinstance(value, DateValue):
        return value.value.isoformat()
    return repr(value.value)
