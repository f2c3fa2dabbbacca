"""
Envelope models for the UHI gateway
Using Pydantic for validation and serialization

A request carries a header block (correlation metadata), an operation
indicator and an opaque JSON payload whose shape depends on the indicator.
Every response carries a code from a fixed vocabulary, a message, optional
JSON data and a timestamp.
"""

import json
import re
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import GatewayConfig


# ============================================================================
# Enums
# ============================================================================

class ResponseCode(IntEnum):
    SUCCESS = 200
    PARTIAL_SUCCESS = 207
    MISSING_FIELD = 301
    INVALID_VALUE = 302
    BAD_REQUEST = 400
    NOT_FOUND = 404
    DUPLICATE = 409
    MISSING_ATTRIBUTE = 410
    INTERNAL_ERROR = 500


class OperationType(str, Enum):
    """Operation recorded in the audit trail"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    LOOKUP = "LOOKUP"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_indicator(cls, indicator: Optional[str]) -> "OperationType":
        return {
            "i": cls.INSERT,
            "u": cls.UPDATE,
            "l": cls.LOOKUP,
        }.get((indicator or "").strip().lower(), cls.UNKNOWN)


# ============================================================================
# Request / response envelopes
# ============================================================================

def _to_text(value: Any) -> Any:
    """Channels send numeric ids as JSON numbers; the envelope keeps them as text"""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class GatewayHeader(BaseModel):
    """Correlation metadata, every field drawn from a configured allow-list"""
    model_config = ConfigDict(extra="ignore")

    correlationId: Optional[str] = None
    originatingChannel: Optional[str] = None
    channelRequestId: Optional[str] = None
    originatingUserType: Optional[str] = None
    originatingUserIdentifier: Optional[str] = None
    serviceSlug: Optional[str] = None
    serviceEntityId: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _to_text(v)


class GatewayRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    header: Optional[GatewayHeader] = None
    id: Optional[str] = None
    indicator: Optional[str] = None
    jsonPayload: Optional[str] = None

    @field_validator("id", "indicator", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _to_text(v)

    @field_validator("jsonPayload", mode="before")
    @classmethod
    def serialize_payload(cls, v):
        """Accept the payload either as a JSON string or as an embedded object"""
        if isinstance(v, (dict, list)):
            return json.dumps(v)
        return v

    def payload(self) -> Any:
        """
        Parse jsonPayload.

        Returns None when the payload is absent or blank.
        Raises ValueError when it is not valid JSON after cleanup.
        """
        if is_blank(self.jsonPayload):
            return None
        return json.loads(clean_json(self.jsonPayload))

    def list_name(self) -> str:
        """listName from the payload, or '-' when there is none"""
        try:
            payload = self.payload()
        except ValueError:
            return "-"
        if isinstance(payload, dict) and payload.get("listName") is not None:
            return str(payload["listName"])
        return "-"


class GatewayResponse(BaseModel):
    responseCode: int
    responseMessage: str
    data: Optional[str] = None
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def success(cls, message: str, data: Optional[str] = None) -> "GatewayResponse":
        return cls(responseCode=ResponseCode.SUCCESS, responseMessage=message, data=data)

    @classmethod
    def error(cls, code: int, message: str) -> "GatewayResponse":
        return cls(responseCode=int(code), responseMessage=message)

    @property
    def ok(self) -> bool:
        return self.responseCode == ResponseCode.SUCCESS


# ============================================================================
# Helpers
# ============================================================================

def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def clean_json(raw: str) -> str:
    """
    Tidy hand-written channel payloads before parsing.

    Removes trailing commas before a closing brace/bracket, blank lines and
    trailing whitespace. Valid JSON passes through unchanged in meaning.
    """
    if raw is None or not raw.strip():
        return raw
    cleaned = raw.strip()
    cleaned = re.sub(r",\s*}", "}", cleaned)
    cleaned = re.sub(r",\s*]", "]", cleaned)
    cleaned = re.sub(r"\n\s*\n", "\n", cleaned)
    cleaned = re.sub(r"(?m)\s+$", "", cleaned)
    return cleaned


_HEADER_FIELDS = (
    ("correlationId", "allowed_correlation_ids"),
    ("originatingChannel", "allowed_channels"),
    ("channelRequestId", "allowed_channel_request_ids"),
    ("originatingUserType", "allowed_user_types"),
    ("originatingUserIdentifier", "allowed_user_identifiers"),
    ("serviceSlug", "allowed_service_slugs"),
    ("serviceEntityId", "allowed_entity_ids"),
)


def validate_header(header: Optional[GatewayHeader], config: GatewayConfig) -> Optional[GatewayResponse]:
    """
    Check every header field in order: missing -> 301, not allowed -> 302.
    Returns an error response, or None if the header is valid.
    """
    if header is None:
        return GatewayResponse.error(ResponseCode.MISSING_FIELD, "Missing GGHeader")

    for field_name, allow_list in _HEADER_FIELDS:
        value = getattr(header, field_name)
        if is_blank(value):
            return GatewayResponse.error(ResponseCode.MISSING_FIELD, f"Missing {field_name}")
        if value not in getattr(config, allow_list):
            return GatewayResponse.error(ResponseCode.INVALID_VALUE, f"Invalid {field_name}: {value}")
    return None


def validate_request(request: GatewayRequest, config: GatewayConfig) -> Optional[GatewayResponse]:
    """
    Envelope checks that run before any routing.
    Returns an error response, or None if the envelope is acceptable.
    """
    error = validate_header(request.header, config)
    if error is not None:
        return error

    if is_blank(request.indicator):
        return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing or empty indicator")

    if not is_blank(request.id) and len(request.id) > config.max_id_length:
        return GatewayResponse.error(
            ResponseCode.INVALID_VALUE, f"ID too long (max {config.max_id_length} characters)"
        )

    if not is_blank(request.jsonPayload) and len(request.jsonPayload) > config.max_json_payload_length:
        return GatewayResponse.error(
            ResponseCode.INVALID_VALUE,
            f"jsonPayload too long (max {config.max_json_payload_length} characters)",
        )
    return None
