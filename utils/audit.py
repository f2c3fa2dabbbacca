"""
Audit trail for gateway requests

One line per request on the ``uhi_gateway.audit`` logger, written whatever
the business outcome:

    AUDIT: ts | correlationId | op | table | user | ip | Nms | code | message | payload | data
    AUDIT_ERROR: ... | Nms | ERROR | message | payload |
    AUDIT_VALIDATION: ... | Nms | VALIDATION_ERROR | message | payload |
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from models import GatewayRequest, GatewayResponse, OperationType

AUDIT_LOGGER_NAME = "uhi_gateway.audit"

logger = logging.getLogger(__name__)


def _truncate(value: Optional[str], limit: int) -> str:
    if not value:
        return ""
    if len(value) <= limit:
        return value
    return value[:limit] + "..."


class AuditLogger:
    """Writes audit lines for processed, failed and rejected requests"""

    def __init__(self, log_file: Optional[str] = None, payload_limit: int = 1000):
        self.payload_limit = payload_limit
        self.log_file = log_file
        self._logger = logging.getLogger(AUDIT_LOGGER_NAME)
        if log_file:
            self._attach_file_handler(log_file)

    def _attach_file_handler(self, log_file: str):
        path = Path(log_file).resolve()
        for handler in self._logger.handlers:
            if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path:
                return
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        logger.info(f"Audit log file: {path}")

    @staticmethod
    def timestamp() -> str:
        """yyyy-MM-dd HH:mm:ss.SSS"""
        return datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def _prefix(self, kind: str, request: GatewayRequest, processing_ms: int, client_ip: str) -> str:
        header = request.header
        return " | ".join([
            f"{kind}: {self.timestamp()}",
            (header.correlationId if header else None) or "-",
            OperationType.from_indicator(request.indicator).value,
            request.list_name(),
            (header.originatingUserIdentifier if header else None) or "-",
            client_ip or "unknown",
            f"{processing_ms}ms",
        ])

    def log_audit(
        self,
        request: GatewayRequest,
        response: GatewayResponse,
        processing_ms: int,
        client_ip: str,
    ) -> str:
        line = " | ".join([
            self._prefix("AUDIT", request, processing_ms, client_ip),
            str(response.responseCode),
            response.responseMessage,
            _truncate(request.jsonPayload, self.payload_limit),
            _truncate(response.data, self.payload_limit),
        ])
        self._logger.info(line)
        return line

    def log_error(self, request: GatewayRequest, message: str, processing_ms: int, client_ip: str) -> str:
        line = " | ".join([
            self._prefix("AUDIT_ERROR", request, processing_ms, client_ip),
            "ERROR",
            message,
            _truncate(request.jsonPayload, self.payload_limit),
            "",
        ])
        self._logger.error(line)
        return line

    def log_validation_error(self, request: GatewayRequest, message: str, processing_ms: int, client_ip: str) -> str:
        line = " | ".join([
            self._prefix("AUDIT_VALIDATION", request, processing_ms, client_ip),
            "VALIDATION_ERROR",
            message,
            _truncate(request.jsonPayload, self.payload_limit),
            "",
        ])
        self._logger.warning(line)
        return line
