"""Record validation for the legacy target entities.

Validates general rules from the job's rules document (required fields,
string length, critical fields) followed by entity-specific business rules
for guarantees, clients and commissions.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from legacy_migrator.core.exceptions import RecordValidationError
from legacy_migrator.lib.importer.rules import normalize_entity

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9+_.-]+@([A-Za-z0-9.-]+\.[A-Za-z]{2,})$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]?[0-9]{7,15}$")
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")

CRITICAL_FIELDS = frozenset(
    {
        "id",
        "name",
        "type",
        "amount",
        "currency",
        "guarantee_reference",
        "beneficiary_name",
        "applicant_name",
    }
)

MAX_GUARANTEE_TERM_YEARS = 10

# (field, message) pairs
FieldErrors = list[tuple[str, str]]


def _get_str(record: dict[str, Any], field: str) -> str | None:
    value = record.get(field)
    if value is None:
        return None
    return str(value).strip()


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_blank_record(record: dict[str, Any]) -> bool:
    """Whether every value of ``record`` is empty; such records are skipped, not validated."""
    return all(_is_blank(value) for value in record.values())


def _add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February
        return value.replace(year=value.year + years, day=28)


# --- General rules -------------------------------------------------------------


def _check_general(record: dict[str, Any], rules: dict[str, Any], errors: FieldErrors) -> None:
    if rules.get("require_all_fields"):
        for field in rules.get("required_fields", []):
            if _is_blank(record.get(field)):
                errors.append((field, f"Required field missing or empty: {field}"))

    max_length = rules.get("max_string_length")
    if max_length is not None:
        for field, value in record.items():
            if isinstance(value, str) and len(value) > int(max_length):
                errors.append((field, f"Field {field} exceeds maximum length of {max_length}"))

    for field, value in record.items():
        if field in CRITICAL_FIELDS and _is_blank(value):
            errors.append((field, f"Critical field cannot be null or empty: {field}"))


# --- Field checks ----------------------------------------------------------------


def _check_not_empty(record: dict[str, Any], field: str, label: str, errors: FieldErrors) -> None:
    if _is_blank(record.get(field)):
        errors.append((field, f"{label} cannot be empty"))


def _check_amount(record: dict[str, Any], field: str, errors: FieldErrors) -> None:
    raw = _get_str(record, field)
    if raw is None:
        return
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        errors.append((field, f"{field} must be a valid number"))
        return
    if not amount.is_finite():
        errors.append((field, f"{field} must be a valid number"))
        return
    if amount <= 0:
        errors.append((field, f"{field} must be greater than zero"))
    exponent = amount.as_tuple().exponent
    if isinstance(exponent, int) and -exponent > 2:
        errors.append((field, f"{field} cannot have more than 2 decimal places"))


def _check_currency(record: dict[str, Any], field: str, errors: FieldErrors) -> None:
    currency = _get_str(record, field)
    if currency is None:
        return
    if not CURRENCY_PATTERN.match(currency):
        errors.append((field, f"{field} must be a valid 3-letter currency code (e.g., USD, EUR)"))


def _parse_date(record: dict[str, Any], field: str, label: str, errors: FieldErrors) -> date | None:
    raw = _get_str(record, field)
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        errors.append((field, f"{label} must be in valid date format (YYYY-MM-DD)"))
        return None


def _check_email(record: dict[str, Any], field: str, *, required: bool, errors: FieldErrors) -> None:
    email = _get_str(record, field)
    if not email:
        if required:
            errors.append((field, "Email address is required"))
        return
    if not EMAIL_PATTERN.match(email):
        errors.append((field, f"Invalid email format: {email}"))


def _check_phone(record: dict[str, Any], field: str, errors: FieldErrors) -> None:
    phone = _get_str(record, field)
    if not phone:
        return
    if not PHONE_PATTERN.match(phone):
        errors.append((field, f"Invalid phone number format: {phone}"))


def _check_rate(record: dict[str, Any], field: str, errors: FieldErrors) -> None:
    raw = _get_str(record, field)
    if raw is None:
        return
    try:
        rate = Decimal(raw)
    except InvalidOperation:
        errors.append((field, "Commission rate must be a valid number"))
        return
    if not rate.is_finite():
        errors.append((field, "Commission rate must be a valid number"))
    elif rate < 0:
        errors.append((field, "Commission rate cannot be negative"))
    elif rate > 100:
        errors.append((field, "Commission rate cannot exceed 100%"))


# --- Entity rules ----------------------------------------------------------------


def _check_guarantee(record: dict[str, Any], errors: FieldErrors) -> None:
    reference = _get_str(record, "guarantee_reference")
    if reference is not None and len(reference) < 3:
        errors.append(("guarantee_reference", "Guarantee reference must be at least 3 characters"))

    _check_amount(record, "amount", errors)
    _check_currency(record, "currency", errors)

    issue_date = _parse_date(record, "issue_date", "Issue date", errors)
    expiry_date = _parse_date(record, "expiry_date", "Expiry date", errors)
    if issue_date is not None and expiry_date is not None:
        if expiry_date <= issue_date:
            errors.append(("expiry_date", "Expiry date must be after issue date"))
        if expiry_date > _add_years(issue_date, MAX_GUARANTEE_TERM_YEARS):
            errors.append(("expiry_date", "Expiry date cannot be more than 10 years from issue date"))

    _check_not_empty(record, "beneficiary_name", "Beneficiary name", errors)
    _check_not_empty(record, "applicant_name", "Applicant name", errors)
    _check_email(record, "beneficiary_email", required=False, errors=errors)
    _check_email(record, "applicant_email", required=False, errors=errors)


def _check_client(record: dict[str, Any], errors: FieldErrors) -> None:
    _check_not_empty(record, "name", "Client name", errors)
    _check_email(record, "email", required=True, errors=errors)
    _check_phone(record, "phone", errors)
    _check_not_empty(record, "address", "Address", errors)

    tax_id = _get_str(record, "tax_id")
    if tax_id is not None and len(tax_id) < 5:
        errors.append(("tax_id", "Tax ID must be at least 5 characters"))


def _check_commission(record: dict[str, Any], errors: FieldErrors) -> None:
    _check_not_empty(record, "commission_type", "Commission type", errors)
    _check_rate(record, "rate", errors)
    _check_amount(record, "amount", errors)
    _check_currency(record, "currency", errors)
    _check_not_empty(record, "guarantee_reference", "Guarantee reference", errors)


_ENTITY_CHECKS = {
    "GUARANTEE": _check_guarantee,
    "CLIENT": _check_client,
    "COMMISSION": _check_commission,
}


def check_record(record: dict[str, Any], rules: dict[str, Any], target_entity: str) -> FieldErrors:
    """Collect every validation problem of a record.

    Args:
        record: Field name → value.
        rules: The job's validation rules document.
        target_entity: Entity the record migrates into.

    Returns:
        List of (field, message) pairs, empty when the record is valid.
    """
    errors: FieldErrors = []
    _check_general(record, rules, errors)
    entity_check = _ENTITY_CHECKS.get(normalize_entity(target_entity))
    if entity_check is not None:
        entity_check(record, errors)
    return errors


def validate_record(record: dict[str, Any], rules: dict[str, Any], target_entity: str) -> None:
    """Validate a record, raising on the first invalid record.

    Raises:
        RecordValidationError: With every message found and the first
            offending field.
    """
    errors = check_record(record, rules, target_entity)
    if errors:
        raise RecordValidationError([message for _, message in errors], field=errors[0][0])


_SUGGESTIONS: tuple[tuple[str, str], ...] = (
    ("currency code", "Use a 3-letter upper-case ISO 4217 code such as USD or EUR"),
    ("decimal places", "Round the amount to at most 2 decimal places"),
    ("greater than zero", "Provide a positive amount"),
    ("valid number", "Provide a plain decimal number without thousands separators"),
    ("date format", "Format dates as YYYY-MM-DD"),
    ("after issue date", "Make sure the expiry date is later than the issue date"),
    ("10 years", "Shorten the guarantee term to at most 10 years"),
    ("email", "Provide a valid e-mail address such as name@example.com"),
    ("phone", "Provide digits only with an optional leading +"),
    ("maximum length", "Shorten the value or raise max_string_length in the job rules"),
    ("missing or empty", "Populate the field in the source file"),
    ("cannot be empty", "Populate the field in the source file"),
    ("Tax ID", "Provide the full tax identifier (at least 5 characters)"),
    ("Commission rate", "Use a rate between 0 and 100"),
)


def suggest_fix(error: RecordValidationError) -> str | None:
    """Suggest a fix for the first recognizable validation problem."""
    for message in error.errors:
        for needle, suggestion in _SUGGESTIONS:
            if needle.lower() in message.lower():
                return suggestion
    return None
