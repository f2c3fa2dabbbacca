"""
Service Container - Centralized dependency injection container

This module provides a single source of truth for gateway wiring, so the
HTTP transport and the tests build the same object graph.
"""

from typing import Optional

from config import GatewayConfig
from database import DatabaseConnection
from query import QueryBuilder, TableRegistry, TableValidator
from repositories import ColumnCache, RecordRepository
from services.beneficiary_service import BeneficiaryService
from services.enrollment_service import EnrollmentService
from services.nomination_service import NominationService


class ServiceContainer:
    """
    Container for the validator, repository and services with attribute access.

    The column cache is shared by everything built here; call
    ``columns.invalidate()`` after a schema change.
    """
    def __init__(
        self,
        db: DatabaseConnection,
        config: Optional[GatewayConfig] = None,
        registry: Optional[TableRegistry] = None,
    ):
        self.db = db
        self.config = config or GatewayConfig()
        self.validator = TableValidator(registry or TableRegistry.default(self.config.schema))
        self.columns = ColumnCache(db)
        self.records = RecordRepository(db, self.validator, self.columns, QueryBuilder())

        self.enrollment = EnrollmentService(db, self.records)
        self.nomination = NominationService(db, self.records)
        self.beneficiaries = BeneficiaryService(db, self.records)
