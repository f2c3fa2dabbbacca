"""
Nomination: hand a family over to a new Head of Family

Three steps in one transaction:
1. deactivate the current head of the old family
2. move the remaining (non-head) members to the new family id
3. promote the nominated beneficiary to Head of Family

Any failure rolls back all three.
"""

import logging
from typing import Any, Optional, Tuple

from database import DatabaseConnection, rows_affected
from query import quote_ident
from repositories import RecordNotFoundError, RecordRepository

logger = logging.getLogger(__name__)

HEAD_OF_FAMILY = "Head of Family"
INACTIVE = "inactive"
BENEFICIARY_TABLE = "beneficiary"


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def extract_nomination(payload: Any) -> Tuple[Optional[str], Optional[str], Optional[str], bool]:
    """
    Read (old_familyId, new_familyId, new HOF id, hofData present) from

        {"nominationData": {"nominationInfo": {"old_familyId", "new_familyId"},
                            "hofData": [{"id": ...}]}}
    """
    data = payload.get("nominationData") if isinstance(payload, dict) else None
    data = data if isinstance(data, dict) else {}
    info = data.get("nominationInfo") if isinstance(data.get("nominationInfo"), dict) else {}

    def text(value):
        return None if value is None else str(value)

    hof_data = data.get("hofData")
    first = hof_data[0] if isinstance(hof_data, list) and hof_data else None
    new_hof_id = text(first.get("id")) if isinstance(first, dict) else None

    return text(info.get("old_familyId")), text(info.get("new_familyId")), new_hof_id, first is not None


class NominationService:
    """Family head replacement over the beneficiary table"""

    def __init__(self, db: DatabaseConnection, records: RecordRepository):
        self.db = db
        self.records = records

    def _table(self) -> str:
        return self.records.require_table(BENEFICIARY_TABLE)

    async def _column(self, table: str, name: str) -> str:
        return quote_ident(await self.records.columns.physical_name(table, name))

    async def _value(self, table: str, index: int, name: str) -> str:
        """Typed placeholder for a SET value"""
        physical = await self.records.columns.physical_name(table, name)
        types = await self.records.columns.column_types(table)
        return self.records.builder.placeholder(index, physical, types)

    async def deactivate_old_head(self, family_id: str) -> int:
        """Set the old head of ``family_id`` inactive. Returns rows affected."""
        if _blank(family_id):
            logger.warning("deactivate_old_head called with empty familyId, nothing to do")
            return 0

        table = self._table()
        status = await self.db.execute(
            f"UPDATE {table} SET {await self._column(table, 'activationStatus')} = "
            f"{await self._value(table, 1, 'activationStatus')} "
            f"WHERE {await self._column(table, 'familyId')}::text = $2 "
            f"AND LOWER({await self._column(table, 'familyRelation')}) = LOWER($3::text)",
            INACTIVE, str(family_id), HEAD_OF_FAMILY,
        )
        count = rows_affected(status)
        logger.info(f"Deactivated old Head of Family for familyId {family_id}. Rows affected: {count}")
        return count

    async def move_dependents(self, old_family_id: str, new_family_id: str) -> int:
        """Move every non-head member of the old family. Returns rows affected."""
        if _blank(old_family_id) or _blank(new_family_id):
            logger.warning("move_dependents called with empty family ids, nothing to do")
            return 0

        table = self._table()
        family_col = await self._column(table, "familyId")
        status = await self.db.execute(
            f"UPDATE {table} SET {family_col} = {await self._value(table, 1, 'familyId')} "
            f"WHERE {family_col}::text = $2 "
            f"AND LOWER({await self._column(table, 'familyRelation')}) <> LOWER($3::text)",
            str(new_family_id), str(old_family_id), HEAD_OF_FAMILY,
        )
        count = rows_affected(status)
        logger.info(f"Moved {count} dependents from familyId {old_family_id} to {new_family_id}")
        return count

    async def promote_new_head(self, beneficiary_id: str) -> int:
        """
        Make ``beneficiary_id`` the Head of Family.

        Raises:
            RecordNotFoundError: no beneficiary with that id
        """
        if _blank(beneficiary_id):
            raise RecordNotFoundError("New Head of Family id is empty")

        table = self._table()
        if not await self.records.exists_by_keys(table, {"id": beneficiary_id}):
            raise RecordNotFoundError(f"Beneficiary not found: {beneficiary_id}")

        status = await self.db.execute(
            f"UPDATE {table} SET {await self._column(table, 'familyRelation')} = "
            f"{await self._value(table, 1, 'familyRelation')} "
            f"WHERE {await self._column(table, 'id')}::text = $2",
            HEAD_OF_FAMILY, str(beneficiary_id),
        )
        count = rows_affected(status)
        logger.info(f"Promoted beneficiary {beneficiary_id} to Head of Family. Rows affected: {count}")
        return count

    async def process_nomination(self, old_family_id: str, new_family_id: str, new_hof_id: str) -> dict:
        """
        Run the whole nomination atomically.

        Returns:
            Row counts per step
        """
        logger.info(f"Starting nomination for familyId {old_family_id} -> {new_family_id}")
        try:
            async with self.db.transaction():
                deactivated = await self.deactivate_old_head(old_family_id)
                moved = await self.move_dependents(old_family_id, new_family_id)
                promoted = await self.promote_new_head(new_hof_id)
        except Exception as e:
            logger.error(f"Nomination failed for familyId {old_family_id}: {e}", exc_info=True)
            raise

        logger.info(f"✅ Nomination completed. Old familyId: {old_family_id}, new familyId: {new_family_id}")
        return {"deactivated": deactivated, "moved": moved, "promoted": promoted}
