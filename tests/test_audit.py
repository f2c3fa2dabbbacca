"""
Audit line format tests
"""

import logging
import re

from models import GatewayRequest, GatewayResponse
from utils.audit import AUDIT_LOGGER_NAME, AuditLogger
from tests.conftest import make_request

TIMESTAMP = r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}"


def fields(line):
    return line.split(" | ")


class TestAuditLine:

    def test_success_line(self):
        audit = AuditLogger()
        request = make_request("l", {"listName": "Area"}, id="1")
        response = GatewayResponse.success("Lookup completed successfully", data='{"id": "1"}')

        line = audit.log_audit(request, response, 12, "10.0.0.5")

        parts = fields(line)
        assert re.match(rf"^AUDIT: {TIMESTAMP}$", parts[0])
        assert parts[1:] == [
            "1", "LOOKUP", "Area", "2970430001808", "10.0.0.5", "12ms", "200",
            "Lookup completed successfully", '{"listName": "Area"}', '{"id": "1"}',
        ]

    def test_error_line(self):
        line = AuditLogger().log_error(make_request("i", {"listName": "Area"}), "boom", 3, "unknown")

        parts = fields(line)
        assert parts[0].startswith("AUDIT_ERROR: ")
        assert parts[2] == "INSERT"
        assert parts[7:] == ["ERROR", "boom", '{"listName": "Area"}', ""]

    def test_validation_line_without_header(self):
        request = GatewayRequest(indicator="hof")

        line = AuditLogger().log_validation_error(request, "Missing GGHeader", 0, "")

        parts = fields(line)
        assert parts[0].startswith("AUDIT_VALIDATION: ")
        assert parts[1:8] == ["-", "UNKNOWN", "-", "-", "unknown", "0ms", "VALIDATION_ERROR"]
        assert parts[8] == "Missing GGHeader"

    def test_payload_and_data_are_truncated(self):
        audit = AuditLogger(payload_limit=10)
        request = make_request("l", {"listName": "Area", "name": "x" * 50})
        response = GatewayResponse.success("ok", data="y" * 11)

        parts = fields(audit.log_audit(request, response, 1, "ip"))

        assert parts[-2] == request.jsonPayload[:10] + "..."
        assert parts[-1] == "y" * 10 + "..."

    def test_lines_go_to_audit_logger(self, caplog):
        caplog.set_level(logging.INFO, logger=AUDIT_LOGGER_NAME)

        AuditLogger().log_audit(make_request("u", {"listName": "Area"}), GatewayResponse.success("ok"), 1, "ip")

        records = [r for r in caplog.records if r.name == AUDIT_LOGGER_NAME]
        assert len(records) == 1
        assert records[0].getMessage().startswith("AUDIT: ")


class TestAuditFile:

    def test_writes_to_file(self, tmp_path):
        log_file = tmp_path / "logs" / "audit.log"
        audit = AuditLogger(str(log_file))
        try:
            audit.log_validation_error(make_request("x"), "Invalid indicator: x", 0, "ip")
            for handler in logging.getLogger(AUDIT_LOGGER_NAME).handlers:
                handler.flush()

            content = log_file.read_text(encoding="utf-8")
            assert "AUDIT_VALIDATION: " in content
            assert "Invalid indicator: x" in content
        finally:
            audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
            for handler in list(audit_logger.handlers):
                audit_logger.removeHandler(handler)
                handler.close()

    def test_same_file_is_attached_once(self, tmp_path):
        log_file = str(tmp_path / "audit.log")
        audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        try:
            AuditLogger(log_file)
            AuditLogger(log_file)
            file_handlers = [h for h in audit_logger.handlers if isinstance(h, logging.FileHandler)]
            assert len(file_handlers) == 1
        finally:
            for handler in list(audit_logger.handlers):
                audit_logger.removeHandler(handler)
                handler.close()
