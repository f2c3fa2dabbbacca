"""
HOF (Head of Family) enrollment

Payload:
    {"hofEnrollmentData": {"hofData": [member, ...]}}

Each member is a beneficiary object that may carry "contacts" and
"employments" arrays. Every member is validated before anything is written;
the writes for all members then share one transaction.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from database import DatabaseConnection
from repositories import MissingAttributesError, RecordRepository

logger = logging.getLogger(__name__)

BENEFICIARY_TABLE = "beneficiary"
CONTACT_TABLE = "contact"
EMPLOYMENT_TABLE = "employment"

BENEFICIARY_REQUIRED_FIELDS = (
    "id", "firstName", "lastName", "fullName", "dob", "gender",
    "mobile", "nationality", "nationalId", "email",
)

EMPLOYMENT_REQUIRED_FIELDS = (
    "id", "beneficiaryId", "netIncome", "jobDescription", "job",
    "employerGovernerate", "companySocialInsuranceId",
)

CHILD_COLLECTIONS = ("contacts", "employments")


class MalformedPayloadError(ValueError):
    """Payload structure is wrong (maps to 400)"""


def find_missing_field(record: Mapping[str, Any], required: Sequence[str]) -> Optional[str]:
    """First required field that is absent, null or blank"""
    for field in required:
        value = record.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            return field
    return None


def _id_text(value: Any) -> str:
    return "" if value is None else str(value).strip()


class EnrollmentService:
    """Validates and writes HOF enrollments"""

    def __init__(self, db: DatabaseConnection, records: RecordRepository):
        self.db = db
        self.records = records

    @staticmethod
    def extract_members(payload: Any) -> List[Dict[str, Any]]:
        """Pull hofData out of the payload, raising MalformedPayloadError on bad structure"""
        if not isinstance(payload, dict) or not isinstance(payload.get("hofEnrollmentData"), dict):
            raise MalformedPayloadError("Missing hofEnrollmentData in jsonPayload")

        members = payload["hofEnrollmentData"].get("hofData")
        if not isinstance(members, list):
            raise MalformedPayloadError("Missing or invalid hofData array")
        if not members:
            raise MalformedPayloadError("Empty hofData array")
        if any(not isinstance(member, dict) or not _id_text(member.get("id")) for member in members):
            raise MalformedPayloadError("Missing id in hofData member")
        return members

    @staticmethod
    def split_member(member: Mapping[str, Any]):
        """
        Split a member into (beneficiary, contacts, employments).

        Contacts always point at the member (any payload beneficiaryID is
        dropped); employments default their beneficiaryId to the member id.
        """
        member_id = _id_text(member.get("id"))
        beneficiary = {k: v for k, v in member.items() if k not in CHILD_COLLECTIONS}

        contacts = []
        for contact in member.get("contacts") or []:
            if not isinstance(contact, dict):
                continue
            data = {"beneficiaryId": member_id}
            data.update({k: v for k, v in contact.items() if k.lower() != "beneficiaryid"})
            contacts.append(data)

        employments = []
        for employment in member.get("employments") or []:
            if not isinstance(employment, dict):
                continue
            data = {}
            if "beneficiaryId" not in employment:
                data["beneficiaryId"] = member_id
            data.update(employment)
            employments.append(data)

        return beneficiary, contacts, employments

    def validate_members(self, members: Sequence[Mapping[str, Any]]) -> list:
        """
        Check every member and employment before any write.

        Raises:
            MissingAttributesError: "attribute is missed: <field>"
        """
        prepared = []
        for member in members:
            beneficiary, contacts, employments = self.split_member(member)

            missing = find_missing_field(beneficiary, BENEFICIARY_REQUIRED_FIELDS)
            if missing:
                raise MissingAttributesError(f"attribute is missed: {missing}")

            for employment in employments:
                missing = find_missing_field(employment, EMPLOYMENT_REQUIRED_FIELDS)
                if missing:
                    logger.warning(f"HOF employment validation failed for {beneficiary['id']}: {missing}")
                    raise MissingAttributesError(f"attribute is missed: {missing}")

            prepared.append((beneficiary, contacts, employments))
        return prepared

    async def enroll(self, payload: Any) -> int:
        """
        Upsert beneficiary -> contacts -> employments for every member.

        Any failure rolls back every member.

        Returns:
            Number of members enrolled
        """
        members = self.extract_members(payload)
        prepared = self.validate_members(members)

        async with self.db.transaction():
            for beneficiary, contacts, employments in prepared:
                member_id = beneficiary["id"]
                action = await self.records.upsert(BENEFICIARY_TABLE, beneficiary)
                logger.info(f"Beneficiary {member_id}: {action}")

                for contact in contacts:
                    await self.records.upsert(CONTACT_TABLE, contact)
                for employment in employments:
                    await self.records.upsert(EMPLOYMENT_TABLE, employment)

                logger.info(
                    f"HOF member {member_id}: {len(contacts)} contacts, {len(employments)} employments"
                )

        logger.info(f"✅ HOF enrollment completed for {len(prepared)} members")
        return len(prepared)
