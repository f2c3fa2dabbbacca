"""
Beneficiary Handlers
Handles: INSERT_BENEFICIARY, UPDATE_BENEFICIARY, SPLIT_BENEFICIARY (alias split)
"""

import logging

from models import GatewayRequest, GatewayResponse, ResponseCode
from repositories import RecordNotFoundError
from services.enrollment_service import MalformedPayloadError
from utils.error_messages import public_error_message

logger = logging.getLogger(__name__)


def _failure(prefix: str, error: Exception) -> GatewayResponse:
    """Malformed payload -> 400, unknown beneficiary -> 404, anything else -> 500"""
    if isinstance(error, MalformedPayloadError):
        code = ResponseCode.BAD_REQUEST
    elif isinstance(error, RecordNotFoundError):
        code = ResponseCode.NOT_FOUND
    else:
        code = ResponseCode.INTERNAL_ERROR
    return GatewayResponse.error(code, f"{prefix}: {public_error_message(error)}")


async def handle_insert_beneficiary(services, request: GatewayRequest) -> GatewayResponse:
    try:
        await services.beneficiaries.insert_beneficiaries(request.payload())
        return GatewayResponse.success("Beneficiary data inserted successfully")
    except Exception as e:
        logger.error(f"Insert error: {e}", exc_info=True)
        return _failure("Insert failed", e)


async def handle_update_beneficiary(services, request: GatewayRequest) -> GatewayResponse:
    try:
        await services.beneficiaries.update_beneficiaries(request.payload())
        return GatewayResponse.success("Beneficiary data updated successfully")
    except Exception as e:
        logger.error(f"Update error: {e}", exc_info=True)
        return _failure("Update failed", e)


async def handle_split_beneficiary(services, request: GatewayRequest) -> GatewayResponse:
    try:
        await services.beneficiaries.split(request.payload())
        return GatewayResponse.success("Beneficiary split completed successfully")
    except Exception as e:
        logger.error(f"Split error: {e}", exc_info=True)
        return _failure("Split failed", e)
