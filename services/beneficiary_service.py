"""
Beneficiary bulk writes: INSERT_BENEFICIARY, UPDATE_BENEFICIARY, SPLIT_BENEFICIARY

All three take a list of beneficiary objects, each optionally carrying
"employments" and "contacts" arrays, and write only the fields that name a
real column (unknown fields and nested values are ignored). Each call runs in
one transaction.
"""

import logging
from typing import Any, Dict, List, Mapping

from database import DatabaseConnection
from repositories import RecordNotFoundError, RecordRepository
from services.enrollment_service import (
    BENEFICIARY_TABLE, CONTACT_TABLE, EMPLOYMENT_TABLE, MalformedPayloadError,
)

logger = logging.getLogger(__name__)

CHILD_TABLES = (
    ("employments", EMPLOYMENT_TABLE),
    ("contacts", CONTACT_TABLE),
)


def _beneficiary_list(payload: Any, root_key: str) -> List[Dict[str, Any]]:
    root = payload.get(root_key) if isinstance(payload, dict) else None
    if not isinstance(root, dict):
        raise MalformedPayloadError(f"{root_key} node missing")
    beneficiaries = root.get("beneficiaryData")
    if not isinstance(beneficiaries, list):
        raise MalformedPayloadError("beneficiaryData array missing")
    return [b for b in beneficiaries if isinstance(b, dict)]


def _children(beneficiary: Mapping[str, Any], key: str) -> List[Dict[str, Any]]:
    children = beneficiary.get(key)
    if not isinstance(children, list):
        return []
    return [child for child in children if isinstance(child, dict)]


def _parent_key(child: Mapping[str, Any], parent_id: Any) -> Any:
    """beneficiaryId of a child row, falling back to beneficiaryID and then the parent id"""
    for key in ("beneficiaryId", "beneficiaryID"):
        if child.get(key) is not None:
            return child[key]
    return parent_id


class BeneficiaryService:
    """Transactional writes of beneficiaries with their employments and contacts"""

    def __init__(self, db: DatabaseConnection, records: RecordRepository):
        self.db = db
        self.records = records

    async def insert_beneficiaries(self, payload: Any) -> int:
        """
        Insert beneficiaries, employments and contacts that do not exist yet.

        Payload: {"enrollmentData": {"beneficiaryData": [...]}}
        Beneficiaries are keyed by id, children by (id, beneficiaryId).
        Existing rows are left untouched.

        Returns:
            Number of rows written
        """
        beneficiaries = _beneficiary_list(payload, "enrollmentData")
        written = 0

        async with self.db.transaction():
            for beneficiary in beneficiaries:
                beneficiary_id = beneficiary.get("id")
                if beneficiary_id is None:
                    logger.warning("Skipping beneficiary without id")
                    continue

                if await self.records.insert_if_absent(
                    BENEFICIARY_TABLE, beneficiary, {"id": beneficiary_id}
                ):
                    written += 1

                for key, table in CHILD_TABLES:
                    for child in _children(beneficiary, key):
                        if child.get("id") is None:
                            continue
                        keys = {"id": child["id"], "beneficiaryId": _parent_key(child, beneficiary_id)}
                        row = {k: v for k, v in child.items() if k.lower() != "beneficiaryid"}
                        row["beneficiaryId"] = keys["beneficiaryId"]
                        if await self.records.insert_if_absent(table, row, keys):
                            written += 1

        logger.info(f"✅ Beneficiary insert wrote {written} rows for {len(beneficiaries)} beneficiaries")
        return written

    async def _update_existing(self, table: str, keys: Mapping[str, Any], record: Mapping[str, Any]) -> int:
        physical = self.records.require_table(table)
        if not await self.records.exists_by_keys(physical, keys):
            logger.warning(f"No row in {physical} for {dict(keys)}")
            raise RecordNotFoundError("BENEFICIARY ID NOT FOUND")
        return await self.records.update_by_keys(table, keys, record)

    async def update_beneficiaries(self, payload: Any) -> int:
        """
        Partial update of existing beneficiaries and their children.

        Payload: {"updateData": {"beneficiaryData": [...]}}
        Every referenced row must exist, otherwise RecordNotFoundError and
        nothing from the call is kept.

        Returns:
            Number of rows changed
        """
        beneficiaries = _beneficiary_list(payload, "updateData")
        changed = 0

        async with self.db.transaction():
            for beneficiary in beneficiaries:
                beneficiary_id = beneficiary.get("id")
                if beneficiary_id is None:
                    raise MalformedPayloadError("Missing id in beneficiaryData")

                changed += await self._update_existing(BENEFICIARY_TABLE, {"id": beneficiary_id}, beneficiary)

                for key, table in CHILD_TABLES:
                    for child in _children(beneficiary, key):
                        if child.get("id") is None:
                            raise MalformedPayloadError(f"Missing id in {key}")
                        keys = {"id": child["id"], "beneficiaryId": child.get("beneficiaryId", beneficiary_id)}
                        changed += await self._update_existing(table, keys, child)

        logger.info(f"✅ Beneficiary update changed {changed} rows")
        return changed

    async def split(self, payload: Any) -> int:
        """
        Move beneficiaries to a new family.

        Payload:
            {"splitData": {"splitInfo": {"old_familyId", "new_familyId", "splitDate"},
                           "beneficiaryData": [...]}}

        Each listed beneficiary must exist; it gets the new familyId and a
        fresh updatedAt, and its employments/contacts are upserted by id.

        Returns:
            Number of beneficiaries moved
        """
        split_data = payload.get("splitData") if isinstance(payload, dict) else None
        if not isinstance(split_data, dict):
            raise MalformedPayloadError("splitData node missing")
        split_info = split_data.get("splitInfo")
        if not isinstance(split_info, dict):
            raise MalformedPayloadError("splitInfo node missing")

        new_family_id = split_info.get("new_familyId")
        if new_family_id is None:
            raise MalformedPayloadError("new_familyId missing in splitInfo")
        beneficiaries = _beneficiary_list(payload, "splitData")

        logger.info(
            f"Splitting {len(beneficiaries)} beneficiaries from familyId {split_info.get('old_familyId')} "
            f"to {new_family_id} (splitDate {split_info.get('splitDate')})"
        )

        async with self.db.transaction():
            for beneficiary in beneficiaries:
                beneficiary_id = beneficiary.get("id")
                if beneficiary_id is None:
                    raise MalformedPayloadError("Missing id in beneficiaryData")
                if not await self.records.record_exists(BENEFICIARY_TABLE, beneficiary_id):
                    raise RecordNotFoundError(f"Beneficiary not found: {beneficiary_id}")

                await self.records.update_by_keys(
                    BENEFICIARY_TABLE,
                    {"id": beneficiary_id},
                    {"familyId": new_family_id},
                    touch_columns=("updatedAt",),
                )

                for key, table in CHILD_TABLES:
                    for child in _children(beneficiary, key):
                        if child.get("id") is None:
                            continue
                        await self.records.upsert(table, child)

                logger.info(f"Beneficiary {beneficiary_id} moved to familyId {new_family_id}")

        logger.info(f"✅ Split completed for {len(beneficiaries)} beneficiaries")
        return len(beneficiaries)
