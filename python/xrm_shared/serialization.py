"""xrm_shared.serialization: remote execution context JSON <-> ExecutionContext.

Dataverse posts the execution context to webhooks and remote handlers in
data-contract JSON:

    - collections are key/value arrays: [{"key": "Target", "value": {...}}]
    - typed values carry "__type": "Entity:http://schemas.microsoft.com/...",
      EntityReference, EntityCollection, OptionSetValue, Money
    - dates are "/Date(1761850730000)/" or "/Date(1761850730000+0200)/"

Dates are normalized to timezone-aware UTC datetimes wherever they appear in
parameters, shared variables, images and nested records.
"""

from __future__ import annotations

import datetime as dt
import json
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

from .execution_context import ExecutionContext, ImageCollection
from .records import Money, OptionSetValue, Record, RecordCollection, RecordReference

CONTRACTS_NS = "http://schemas.microsoft.com/xrm/2011/Contracts"
EMPTY_GUID = "00000000-0000-0000-0000-000000000000"

_MS_JSON_DATE = re.compile(r"^/Date\((?P<ms>-?\d+)(?P<offset>[+-]\d{4})?\)/$")

# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def parse_ms_json_date(value: str) -> Optional[dt.datetime]:
    """``/Date(ms[+-hhmm])/`` -> UTC datetime, or None when ``value`` is not one.

    The milliseconds are a UTC instant; the offset only records the sender's
    zone and does not shift the instant.
    """
    match = _MS_JSON_DATE.match(value)
    if not match:
        return None
    ms = int(match.group("ms"))
    return dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc) + dt.timedelta(milliseconds=ms)


def format_ms_json_date(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    epoch = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)
    ms = (value - epoch) // dt.timedelta(milliseconds=1)
    return f"/Date({ms})/"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _type_name(raw: Dict[str, Any]) -> str:
    return str(raw.get("__type", "")).split(":", 1)[0]


def _is_key_value_list(raw: Any) -> bool:
    return (
        isinstance(raw, list)
        and bool(raw)
        and all(isinstance(item, dict) and set(item) == {"key", "value"} for item in raw)
    )


def _decode_key_values(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return {key: _decode_value(value) for key, value in raw.items()}
    return {item["key"]: _decode_value(item.get("value")) for item in raw or []}


def _decode_record(raw: Dict[str, Any]) -> Record:
    return Record(
        raw.get("LogicalName") or "",
        raw.get("Id") if raw.get("Id") not in (None, EMPTY_GUID) else None,
        _decode_key_values(raw.get("Attributes")),
    )


def _decode_value(raw: Any) -> Any:
    if isinstance(raw, str):
        parsed = parse_ms_json_date(raw)
        return parsed if parsed is not None else raw
    if isinstance(raw, list):
        if _is_key_value_list(raw):
            return _decode_key_values(raw)
        return [_decode_value(item) for item in raw]
    if not isinstance(raw, dict):
        return raw

    type_name = _type_name(raw)
    if type_name == "Entity" or (not type_name and "LogicalName" in raw and "Attributes" in raw):
        return _decode_record(raw)
    if type_name == "EntityReference":
        return RecordReference(raw.get("LogicalName") or "", raw.get("Id"), raw.get("Name"))
    if type_name == "EntityCollection":
        return RecordCollection(
            [_decode_record(item) for item in raw.get("Entities") or []],
            raw.get("EntityName"),
        )
    if type_name == "OptionSetValue":
        return OptionSetValue(int(raw.get("Value")))
    if type_name == "Money":
        return Money(Decimal(str(raw.get("Value"))))
    return {key: _decode_value(value) for key, value in raw.items() if key != "__type"}


def _decode_images(raw: Any) -> ImageCollection:
    images: ImageCollection = {}
    for name, value in _decode_key_values(raw).items():
        if isinstance(value, dict):
            # Image values are declared as Entity and may omit "__type".
            value = Record(value.get("LogicalName") or "", value.get("Id"), value.get("Attributes") or {})
        images[name] = value
    return images


def _decode_image_arrays(raw: Any) -> Optional[List[ImageCollection]]:
    if raw is None:
        return None
    return [_decode_images(images) for images in raw]


def _decode_context(raw: Dict[str, Any]) -> ExecutionContext:
    parent = raw.get("ParentContext")
    return ExecutionContext(
        message_name=raw.get("MessageName") or "",
        stage=int(raw.get("Stage") or 0),
        primary_entity_name=raw.get("PrimaryEntityName") or "",
        user_id=raw.get("UserId"),
        initiating_user_id=raw.get("InitiatingUserId"),
        input_parameters=_decode_key_values(raw.get("InputParameters")),
        output_parameters=_decode_key_values(raw.get("OutputParameters")),
        shared_variables=_decode_key_values(raw.get("SharedVariables")),
        pre_entity_images=_decode_images(raw.get("PreEntityImages")),
        post_entity_images=_decode_images(raw.get("PostEntityImages")),
        pre_entity_images_collection=_decode_image_arrays(raw.get("PreEntityImagesCollection")),
        post_entity_images_collection=_decode_image_arrays(raw.get("PostEntityImagesCollection")),
        depth=int(raw.get("Depth") or 1),
        mode=int(raw.get("Mode") or 0),
        correlation_id=raw.get("CorrelationId"),
        request_id=raw.get("RequestId"),
        organization_name=raw.get("OrganizationName") or "",
        parent_context=_decode_context(parent) if isinstance(parent, dict) else None,
    )


def deserialize_context(body: Union[str, bytes, Dict[str, Any], None]) -> Optional[ExecutionContext]:
    """Build an ExecutionContext from remote execution context JSON.

    Returns None for an empty body. Raises ValueError for malformed JSON and
    for JSON whose shape is not an execution context.
    """
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    if isinstance(body, str):
        if not body.strip():
            return None
        try:
            body = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid execution context JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise ValueError(f"Unsupported execution context payload: {type(body).__name__}")
    try:
        return _decode_context(body)
    except (KeyError, TypeError, AttributeError, InvalidOperation) as exc:
        raise ValueError(f"Malformed execution context: {type(exc).__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _typed(type_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"__type": f"{type_name}:{CONTRACTS_NS}", **payload}


def _encode_key_values(values: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"key": key, "value": _encode_value(value)} for key, value in (values or {}).items()]


def _encode_record(record: Record) -> Dict[str, Any]:
    return _typed(
        "Entity",
        {
            "Attributes": _encode_key_values(record.attributes),
            "Id": record.id or EMPTY_GUID,
            "LogicalName": record.logical_name,
        },
    )


def _encode_value(value: Any) -> Any:
    if isinstance(value, Record):
        return _encode_record(value)
    if isinstance(value, RecordReference):
        return _typed(
            "EntityReference",
            {"Id": value.id or EMPTY_GUID, "LogicalName": value.logical_name, "Name": value.name},
        )
    if isinstance(value, RecordCollection):
        return _typed(
            "EntityCollection",
            {
                "Entities": [_encode_record(record) for record in value],
                "EntityName": value.logical_name,
            },
        )
    if isinstance(value, OptionSetValue):
        return _typed("OptionSetValue", {"Value": value.value})
    if isinstance(value, Money):
        return _typed("Money", {"Value": float(value.value)})
    if isinstance(value, dt.datetime):
        return format_ms_json_date(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return _encode_key_values(value)
    if isinstance(value, (list, tuple)):
        return [_encode_value(item) for item in value]
    return value


def _encode_context(context: ExecutionContext) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "CorrelationId": context.correlation_id,
        "Depth": context.depth,
        "InitiatingUserId": context.initiating_user_id,
        "InputParameters": _encode_key_values(context.input_parameters),
        "MessageName": context.message_name,
        "Mode": context.mode,
        "OrganizationName": context.organization_name,
        "OutputParameters": _encode_key_values(context.output_parameters),
        "ParentContext": _encode_context(context.parent_context) if context.parent_context else None,
        "PostEntityImages": _encode_key_values(context.post_entity_images),
        "PreEntityImages": _encode_key_values(context.pre_entity_images),
        "PrimaryEntityName": context.primary_entity_name,
        "RequestId": context.request_id,
        "SharedVariables": _encode_key_values(context.shared_variables),
        "Stage": int(context.stage),
        "UserId": context.user_id,
    }
    if context.pre_entity_images_collection is not None:
        payload["PreEntityImagesCollection"] = [
            _encode_key_values(images) for images in context.pre_entity_images_collection
        ]
    if context.post_entity_images_collection is not None:
        payload["PostEntityImagesCollection"] = [
            _encode_key_values(images) for images in context.post_entity_images_collection
        ]
    return payload


def serialize_context(context: Optional[ExecutionContext]) -> str:
    """Remote execution context JSON for ``context``; empty string for None."""
    if context is None:
        return ""
    return json.dumps(_encode_context(context), default=str)
