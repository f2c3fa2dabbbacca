"""
Family Handlers
Handles: hof (Head of Family enrollment), nomination (Head of Family change)
"""

import logging

from models import GatewayRequest, GatewayResponse, ResponseCode, is_blank
from repositories import DuplicateIdError, MissingAttributesError
from services.enrollment_service import MalformedPayloadError
from services.nomination_service import extract_nomination
from utils.error_messages import is_unique_violation, public_error_message

logger = logging.getLogger(__name__)


async def handle_hof_enrollment(services, request: GatewayRequest) -> GatewayResponse:
    """Enroll a family: every member validated first, then written in one transaction"""
    logger.info("Processing HOF enrollment request")
    if is_blank(request.jsonPayload):
        return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing jsonPayload for HOF operation")

    try:
        enrolled = await services.enrollment.enroll(request.payload())
        logger.info(f"HOF enrollment wrote {enrolled} members")
        return GatewayResponse.success("HOF enrollment completed successfully")

    except MalformedPayloadError as e:
        return GatewayResponse.error(ResponseCode.BAD_REQUEST, str(e))
    except MissingAttributesError as e:
        logger.warning(f"HOF validation failed: {e}")
        return GatewayResponse.error(
            ResponseCode.MISSING_ATTRIBUTE, f"Missing required attributes in HOF enrollment: {e}"
        )
    except DuplicateIdError as e:
        return GatewayResponse.error(ResponseCode.DUPLICATE, f"Duplicate ID in HOF enrollment: {e}")
    except Exception as e:
        if is_unique_violation(e):
            logger.warning(f"HOF enrollment hit a unique constraint: {e}")
            return GatewayResponse.error(
                ResponseCode.DUPLICATE, f"Duplicate ID in HOF enrollment: {public_error_message(e)}"
            )
        logger.error(f"HOF enrollment operation error: {e}", exc_info=True)
        return GatewayResponse.error(
            ResponseCode.INTERNAL_ERROR, f"HOF enrollment operation failed: {public_error_message(e)}"
        )


async def handle_nomination(services, request: GatewayRequest) -> GatewayResponse:
    """Replace the Head of Family and move the remaining members to the new family id"""
    logger.info("Processing nomination request")
    try:
        old_family_id, new_family_id, new_hof_id, hof_present = extract_nomination(request.payload())

        if is_blank(old_family_id) or is_blank(new_family_id):
            return GatewayResponse.error(
                ResponseCode.BAD_REQUEST, "Missing old_familyId or new_familyId in payload"
            )
        if not hof_present:
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing hofData in payload")
        if is_blank(new_hof_id):
            return GatewayResponse.error(ResponseCode.BAD_REQUEST, "Missing id in hofData")

        counts = await services.nomination.process_nomination(old_family_id, new_family_id, new_hof_id)
        logger.info(f"Nomination row counts: {counts}")
        return GatewayResponse.success("Nomination completed successfully")

    except Exception as e:
        logger.error(f"Nomination operation error: {e}")
        return GatewayResponse.error(
            ResponseCode.INTERNAL_ERROR, f"Nomination operation failed: {public_error_message(e)}"
        )
