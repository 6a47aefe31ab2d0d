"""Default validation rules per target entity."""

import json
from typing import Any

SUPPORTED_ENTITIES = ("GUARANTEE", "CLIENT", "COMMISSION")

DEFAULT_MAX_STRING_LENGTH = 500

REQUIRED_FIELDS: dict[str, list[str]] = {
    "GUARANTEE": ["guarantee_reference", "amount", "currency", "beneficiary_name", "applicant_name"],
    "CLIENT": ["name", "email", "address"],
    "COMMISSION": ["guarantee_reference", "commission_type", "rate", "amount", "currency"],
}


def normalize_entity(target_entity: str) -> str:
    """Canonical (upper-case, trimmed) form of a target entity name."""
    return target_entity.strip().upper()


def is_supported_entity(target_entity: str) -> bool:
    return normalize_entity(target_entity) in SUPPORTED_ENTITIES


def default_validation_rules(target_entity: str) -> dict[str, Any]:
    """Build the rules a new job is validated with.

    Args:
        target_entity: Entity the job migrates into.

    Returns:
        Rules document stored on the job; ``required_fields`` is empty for
        entities without a known field list.
    """
    return {
        "require_all_fields": True,
        "allow_duplicates": False,
        "max_string_length": DEFAULT_MAX_STRING_LENGTH,
        "required_fields": list(REQUIRED_FIELDS.get(normalize_entity(target_entity), [])),
    }


def load_rules(raw: str | None) -> dict[str, Any]:
    """Parse a job's serialized validation rules.

    Missing rules mean no general checks.

    Raises:
        ValueError: If the stored document is not a JSON object.
    """
    if not raw:
        return {}
    rules = json.loads(raw)
    if not isinstance(rules, dict):
        msg = "Validation rules must be a JSON object"
        raise ValueError(msg)
    return rules
