"""Typed response values.

The remote service and the local cache both store a response as a single
string; composite answers (selections, measurements, locations, uploaded
media) are JSON-encoded into it. This module is the only place that string
is parsed or produced: callers decode once at the boundary and work with the
tagged union below.
"""

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, ValidationError

from inspection_sync.models.enums import ItemType

logger = logging.getLogger(__name__)


class ScalarValue(BaseModel):
    kind: Literal["scalar"] = "scalar"
    value: str


class ChoiceSetValue(BaseModel):
    kind: Literal["choice_set"] = "choice_set"
    choices: list[str] = Field(default_factory=list)


class MeasurementValue(BaseModel):
    kind: Literal["measurement"] = "measurement"
    value: float | None = None
    unit: str | None = None


class CurrencyValue(BaseModel):
    kind: Literal["currency"] = "currency"
    amount: float | None = None
    currency: str | None = None


class LocationValue(BaseModel):
    kind: Literal["location"] = "location"
    latitude: float
    longitude: float
    accuracy: float | None = None


class MediaValue(BaseModel):
    kind: Literal["media"] = "media"
    paths: list[str] = Field(min_length=1)


class StructuredValue(BaseModel):
    kind: Literal["structured"] = "structured"
    data: dict[str, Any] = Field(default_factory=dict)


ResponseValueVariant = Union[
    ScalarValue,
    ChoiceSetValue,
    MeasurementValue,
    CurrencyValue,
    LocationValue,
    MediaValue,
    StructuredValue,
]

ResponseValue = Annotated[ResponseValueVariant, Field(discriminator="kind")]


CHOICE_TYPES = {ItemType.MULTI_SELECT, ItemType.CHECKLIST}
MEASUREMENT_TYPES = {ItemType.MEASUREMENT, ItemType.TEMPERATURE, ItemType.METER_READING}
MEDIA_TYPES = {ItemType.PHOTO}
STRUCTURED_TYPES = {
    ItemType.SIGNATURE,
    ItemType.PERSON_PICKER,
    ItemType.COMPOSITE_ADDRESS,
    ItemType.COMPOSITE_CONTACT,
}


def _parse_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (ValueError, TypeError):
        return None


def _coerce_item_type(item_type: str | ItemType | None) -> ItemType | None:
    if item_type is None or isinstance(item_type, ItemType):
        return item_type
    try:
        return ItemType(item_type)
    except ValueError:
        return None


def decode_response_value(
    item_type: str | ItemType | None,
    raw: str | None,
) -> ResponseValueVariant | None:
    """Decode the stored string for an item into its typed form.

    Anything that does not parse as the shape the item type expects falls
    back to ScalarValue carrying the raw text, so nothing is discarded.
    """
    if raw is None:
        return None

    kind = _coerce_item_type(item_type)
    parsed = _parse_json(raw)

    try:
        if kind in CHOICE_TYPES and isinstance(parsed, list):
            return ChoiceSetValue(choices=[str(c) for c in parsed])
        if kind in MEASUREMENT_TYPES and isinstance(parsed, dict):
            return MeasurementValue(value=parsed.get("value"), unit=parsed.get("unit"))
        if kind == ItemType.CURRENCY and isinstance(parsed, dict):
            return CurrencyValue(amount=parsed.get("amount"), currency=parsed.get("currency"))
        if kind == ItemType.GPS_LOCATION and isinstance(parsed, dict):
            return LocationValue(**parsed)
        if kind in MEDIA_TYPES:
            if isinstance(parsed, list) and parsed:
                return MediaValue(paths=[str(p) for p in parsed])
            if raw:
                return MediaValue(paths=[raw])
        if kind in STRUCTURED_TYPES and isinstance(parsed, dict):
            return StructuredValue(data=parsed)
    except ValidationError as exc:
        logger.warning("Malformed %s value, keeping raw text: %s", kind, exc)

    return ScalarValue(value=raw)


def encode_response_value(value: Any) -> str | None:
    """Encode a typed value back into the single stored string."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, ScalarValue):
        return value.value
    if isinstance(value, ChoiceSetValue):
        return json.dumps(value.choices)
    if isinstance(value, MeasurementValue):
        return json.dumps({"value": value.value, "unit": value.unit})
    if isinstance(value, CurrencyValue):
        return json.dumps({"amount": value.amount, "currency": value.currency})
    if isinstance(value, LocationValue):
        return json.dumps(value.model_dump(exclude={"kind"}))
    if isinstance(value, MediaValue):
        # One uploaded file is stored as the bare path
        if len(value.paths) == 1:
            return value.paths[0]
        return json.dumps(value.paths)
    if isinstance(value, StructuredValue):
        return json.dumps(value.data)
    raise TypeError(f"Unsupported response value type: {type(value).__name__}")
