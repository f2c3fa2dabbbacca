"""
Table Registry and Validator

Maps short logical names ("Area", "beneficiary") to schema-qualified physical
tables and gates every table name before it reaches SQL text.

A name is accepted only if it resolves through the registry (or is already
one of the registered physical names), matches the identifier pattern, carries
no SQL keyword and no dangerous character.

NOTE: the keyword check is a plain substring match, not a word match.
Registered lookup tables such as bms_Gender_lkp ("END") or
bms_Governorate_lkp ("OR") are rejected by it. This is kept on purpose so the
gateway answers exactly as deployed channels expect.
"""

import re
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from config import DEFAULT_SCHEMA

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)?$")

SQL_KEYWORDS = (
    "SELECT", "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE",
    "EXEC", "EXECUTE", "UNION", "JOIN", "WHERE", "FROM", "INTO", "VALUES", "SET",
    "AND", "OR", "NOT", "LIKE", "IN", "BETWEEN", "ORDER", "GROUP", "HAVING",
    "DISTINCT", "TOP", "LIMIT", "OFFSET", "CASE", "WHEN", "THEN", "ELSE", "END",
    "IF", "EXISTS", "ALL", "ANY", "SOME", "NULL", "TRUE", "FALSE",
)

DANGEROUS_CHARS = frozenset("';\"\\-/*(){}[]|&^%$#@!~`+=<>?")

# Lookup lists live in bms_<Name>_lkp tables
LOOKUP_ALIASES = (
    "Area", "Country", "City", "MossCategory", "DiseaseList", "MossIndicator",
    "SocialStatus", "CollectionEntities", "Language", "Nationality",
    "SickCategory", "DeactivationReasons", "Governorate", "Education",
    "MossSubCategory", "Provider", "Gender", "MilitaryService", "Telecom",
    "Relation", "Cluster",
)

ENTITY_ALIASES = ("beneficiary", "contact", "employment")


def _is_well_formed(physical_name: str) -> bool:
    return bool(TABLE_NAME_PATTERN.match(physical_name)) and not any(
        ch in DANGEROUS_CHARS for ch in physical_name
    )


@dataclass(frozen=True)
class TableRegistry:
    """
    Immutable alias -> physical table mapping.

    ``with_table`` / ``without_table`` return a new registry; the registry a
    validator was built with never changes underneath it.
    """
    aliases: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "aliases", MappingProxyType(dict(self.aliases)))

    @classmethod
    def default(cls, schema: str = DEFAULT_SCHEMA) -> "TableRegistry":
        """Registry of the warehouse lookup lists and beneficiary tables"""
        aliases = {name: f"{schema}.bms_{name}_lkp" for name in LOOKUP_ALIASES}
        aliases.update({name: f"{schema}.{name}" for name in ENTITY_ALIASES})
        return cls(aliases)

    @property
    def physical_names(self) -> frozenset:
        return frozenset(self.aliases.values())

    def with_table(self, alias: str, physical_name: str) -> "TableRegistry":
        """Return a registry that also maps ``alias`` to ``physical_name``"""
        if not alias or not alias.strip():
            raise ValueError("Alias cannot be empty")
        if not physical_name or not _is_well_formed(physical_name):
            raise ValueError(f"Invalid physical table name: {physical_name}")
        aliases = dict(self.aliases)
        aliases[alias.strip()] = physical_name
        return TableRegistry(aliases)

    def without_table(self, alias: str) -> "TableRegistry":
        """Return a registry without ``alias`` (no-op when absent)"""
        aliases = dict(self.aliases)
        aliases.pop(alias.strip(), None)
        return TableRegistry(aliases)


class TableValidator:
    """Resolves and validates table names against a TableRegistry"""

    def __init__(self, registry: Optional[TableRegistry] = None):
        self.registry = registry or TableRegistry.default()

    def resolve(self, name: Optional[str]) -> Optional[str]:
        """
        Resolve an alias or a registered physical name.

        Returns the physical table name, or None when the name is unknown.
        """
        if name is None:
            return None
        candidate = name.strip()
        if not candidate:
            return None

        physical = self.registry.aliases.get(candidate)
        if physical is not None:
            return physical
        if candidate in self.registry.physical_names:
            return candidate
        return None

    def is_valid(self, name: Optional[str]) -> bool:
        resolved = self.resolve(name)
        if not resolved:
            logger.warning(f"Unknown table name: {name!r}")
            return False

        if not TABLE_NAME_PATTERN.match(resolved):
            logger.warning(f"Table name fails pattern: {resolved}")
            return False

        upper = resolved.upper()
        for keyword in SQL_KEYWORDS:
            if keyword in upper:
                logger.warning(f"Table name {resolved} contains SQL keyword {keyword}")
                return False

        if any(ch in DANGEROUS_CHARS for ch in resolved):
            logger.warning(f"Table name contains dangerous characters: {resolved}")
            return False

        return True

    def resolve_valid(self, name: Optional[str]) -> Optional[str]:
        """Physical name if ``name`` passes validation, else None"""
        if not self.is_valid(name):
            return None
        return self.resolve(name)

    def allowed_tables(self) -> frozenset:
        return self.registry.physical_names

    def with_table(self, alias: str, physical_name: str) -> "TableValidator":
        return TableValidator(self.registry.with_table(alias, physical_name))

    def without_table(self, alias: str) -> "TableValidator":
        return TableValidator(self.registry.without_table(alias))

    @staticmethod
    def sanitize(name: Optional[str]) -> str:
        """Strip everything but letters, digits, underscore and inner dots"""
        if not name:
            return ""
        cleaned = re.sub(r"[^A-Za-z0-9_.]", "", name)
        return cleaned.strip(".")

    @staticmethod
    def starts_with_prefix(name: Optional[str], prefix: Optional[str]) -> bool:
        if not name or not prefix:
            return False
        return name.upper().startswith(prefix.upper())

    @staticmethod
    def ends_with_suffix(name: Optional[str], suffix: Optional[str]) -> bool:
        if not name or not suffix:
            return False
        return name.upper().endswith(suffix.upper())
