"""
UHI Lookup Gateway Entry Point
Run with: python server.py [--host HOST] [--port PORT]
"""

import logging
import sys
import time
from typing import Optional

from config import GatewayConfig
from container import ServiceContainer
from handlers import get_handler
from models import GatewayRequest, GatewayResponse, ResponseCode, validate_request
from utils.audit import AuditLogger
from utils.error_messages import public_error_message

__version__ = "1.0.0"

# Initialize logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class GatewayServer:
    """
    Request dispatcher.

    Order of checks: envelope (header, indicator, lengths), indicator lookup,
    listName for indicators that need a table, then the handler. Every
    request leaves exactly one audit line.
    """

    def __init__(
        self,
        services: ServiceContainer,
        config: Optional[GatewayConfig] = None,
        audit: Optional[AuditLogger] = None,
    ):
        self.services = services
        self.config = config or services.config
        self.audit = audit or AuditLogger(self.config.audit_log_file, self.config.audit_payload_limit)

    async def handle(self, request: GatewayRequest, client_ip: str = "unknown") -> GatewayResponse:
        start = time.perf_counter()
        correlation_id = request.header.correlationId if request.header else None
        logger.info(f"Received new request - CorrelationId: {correlation_id}")

        def elapsed_ms() -> int:
            return int((time.perf_counter() - start) * 1000)

        try:
            error = validate_request(request, self.config)
            if error is not None:
                logger.warning(f"Request validation failed - code: {error.responseCode}, message: {error.responseMessage}")
                self.audit.log_validation_error(request, error.responseMessage, elapsed_ms(), client_ip)
                return error

            handler_info = get_handler(request.indicator)
            if handler_info is None:
                message = f"Invalid indicator: {request.indicator}"
                logger.warning(message)
                self.audit.log_validation_error(request, message, elapsed_ms(), client_ip)
                return GatewayResponse.error(ResponseCode.BAD_REQUEST, message)

            handler, needs_table_check = handler_info
            if needs_table_check:
                table_name = request.list_name()
                if not self.services.validator.is_valid(table_name):
                    message = f"Invalid table name: {table_name}"
                    logger.warning(message)
                    self.audit.log_validation_error(request, message, elapsed_ms(), client_ip)
                    return GatewayResponse.error(ResponseCode.BAD_REQUEST, message)

            response = await handler(self.services, request)
            self.audit.log_audit(request, response, elapsed_ms(), client_ip)
            return response

        except Exception as e:
            logger.error(f"Error processing request: {e}", exc_info=True)
            message = public_error_message(e)
            self.audit.log_error(request, message, elapsed_ms(), client_ip)
            return GatewayResponse.error(ResponseCode.INTERNAL_ERROR, f"Internal server error: {message}")


def cli_entry():
    """Entry point for console script - runs the HTTP gateway"""
    import argparse

    parser = argparse.ArgumentParser(description="UHI Lookup Gateway")
    parser.add_argument('--version', '-v', action='store_true', help='Show version')
    parser.add_argument('--port', type=int, default=8080, help='Port to listen on (default: 8080)')
    parser.add_argument('--host', type=str, default='127.0.0.1', help='Host to bind (default: 127.0.0.1)')

    args = parser.parse_args()

    if args.version:
        print(f"uhi-lookup-gateway version {__version__}")
        sys.exit(0)

    logger.info(f"Starting UHI gateway on {args.host}:{args.port}/gateway")
    from transport.http import run_http_server
    run_http_server(host=args.host, port=args.port)


if __name__ == "__main__":
    cli_entry()
