"""
Record Handlers
Handles the generic table indicators: i (bulk insert), u (update), l (lookup)

The target table is named by "listName" inside jsonPayload.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from models import GatewayRequest, GatewayResponse, ResponseCode, is_blank
from repositories import DuplicateIdError, MissingAttributesError
from utils.error_messages import public_error_message

logger = logging.getLogger(__name__)


def serialize_result(obj):
    """Helper to serialize datetime and other non-JSON types"""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj) if obj % 1 else int(obj)
    return str(obj)


def to_json(data: Any) -> str:
    return json.dumps(data, default=serialize_result, ensure_ascii=False)


def lookup_criteria(payload: Any) -> Dict[str, Any]:
    """
    Criteria for a lookup: the "criteria" object when present, otherwise every
    top-level field except listName and list.
    """
    if not isinstance(payload, dict):
        return {}
    if isinstance(payload.get("criteria"), dict):
        return payload["criteria"]
    return {k: v for k, v in payload.items() if k not in ("listName", "list")}


async def handle_insert(services, request: GatewayRequest) -> GatewayResponse:
    """Bulk insert: {"listName": "...", "list": [record, ...]}, all or nothing"""
    if is_blank(request.jsonPayload):
        return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing jsonPayload for insert operation")

    try:
        payload = request.payload()
        payload = payload if isinstance(payload, dict) else {}

        list_name = payload.get("listName")
        if is_blank(list_name):
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing listName in jsonPayload")
        records = payload.get("list")
        if not isinstance(records, list) or not records:
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing or empty list array in jsonPayload")
        if not services.validator.is_valid(list_name):
            logger.warning(f"Invalid table name (listName): {list_name}")
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, f"Invalid table name: {list_name}")

        logger.info(f"Processing bulk insert of {len(records)} records into {list_name}")
        success = await services.records.bulk_insert(list_name, records)
        if success:
            return GatewayResponse.success("Bulk records inserted successfully")
        return GatewayResponse.error(ResponseCode.INTERNAL_ERROR, "Failed to insert records")

    except DuplicateIdError as e:
        logger.warning(f"Duplicate ID error: {e}")
        return GatewayResponse.error(ResponseCode.DUPLICATE, "id is duplicate")
    except MissingAttributesError as e:
        logger.warning(f"Missing attributes error: {e}")
        return GatewayResponse.error(ResponseCode.MISSING_ATTRIBUTE, "there are attribute is missing")
    except Exception as e:
        logger.error(f"Bulk insert operation error: {e}", exc_info=True)
        return GatewayResponse.error(
            ResponseCode.INTERNAL_ERROR, f"Bulk insert operation failed: {public_error_message(e)}"
        )


async def handle_update(services, request: GatewayRequest) -> GatewayResponse:
    """
    Update records of listName.

    Bulk form {"listName", "list": [{"id", ...}]} reports 200 / 207 / 404 by
    how many items were applied; items without an id count as failures.
    Single form {"listName", ...fields} takes the id from the envelope.
    """
    if is_blank(request.jsonPayload):
        return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing jsonPayload for update operation")

    table_name = request.list_name()
    logger.info(f"Processing Update request for table: {table_name}")
    try:
        payload = request.payload()

        if isinstance(payload, dict) and "listName" in payload and isinstance(payload.get("list"), list):
            items = payload["list"]
            total = len(items)
            updated = 0
            for item in items:
                if not isinstance(item, dict) or is_blank(item.get("id")):
                    logger.warning("Missing id in one of the bulk update items")
                    continue
                if await services.records.update(table_name, str(item["id"]), item):
                    updated += 1

            if updated == total:
                return GatewayResponse.success("Bulk update completed successfully")
            if updated == 0:
                return GatewayResponse.error(ResponseCode.NOT_FOUND, "No records updated. Check IDs and data.")
            return GatewayResponse.error(
                ResponseCode.PARTIAL_SUCCESS, f"Partial success: {updated}/{total} records updated."
            )

        if is_blank(request.id):
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing ID for single update operation")

        record = {k: v for k, v in payload.items() if k != "listName"} if isinstance(payload, dict) else {}
        if await services.records.update(table_name, request.id, record):
            return GatewayResponse.success("Record updated successfully")
        return GatewayResponse.error(ResponseCode.NOT_FOUND, "Record not found or update failed")

    except Exception as e:
        logger.error(f"Update operation error: {e}", exc_info=True)
        return GatewayResponse.error(
            ResponseCode.INTERNAL_ERROR, f"Update operation failed: {public_error_message(e)}"
        )


async def handle_lookup(services, request: GatewayRequest) -> GatewayResponse:
    """Lookup by envelope id, by criteria, or every row of listName"""
    table_name = request.list_name()
    logger.info(f"Processing Lookup request for table: {table_name}")
    try:
        result: Optional[Any]
        if not is_blank(request.id):
            result = await services.records.lookup_by_id(table_name, request.id)
        elif not is_blank(request.jsonPayload):
            criteria = lookup_criteria(request.payload())
            if criteria:
                result = await services.records.lookup_by_criteria(table_name, criteria)
            else:
                result = await services.records.lookup_all(table_name)
        else:
            result = await services.records.lookup_all(table_name)

        if result is None:
            return GatewayResponse.error(ResponseCode.NOT_FOUND, "No records found")
        return GatewayResponse.success("Lookup completed successfully", data=to_json(result))

    except Exception as e:
        logger.error(f"Lookup operation error: {e}", exc_info=True)
        return GatewayResponse.error(
            ResponseCode.INTERNAL_ERROR, f"Lookup operation failed: {public_error_message(e)}"
        )
