"""
Request-body field validators shared by the service layer.

Each helper reads one field from a payload dict, normalizes it and raises
ValidationError with a field-level ``details`` entry when it is unusable:

    name = text_field(data, "name", 500, required=True)
    weight = number_field(data, "weight", minimum=0, maximum=100)
    issue_date = date_field(data, "issue_date")
"""

from evidence_hub.core.exceptions import ValidationError
from evidence_hub.utils.helpers import parse_date_input


def validate_enum(value, allowed: set[str], field_name: str) -> None:
    if value is None or value == "":
        return
    if not isinstance(value, str) or value not in allowed:
        raise ValidationError(
            f"Invalid {field_name}: {value!r}. Allowed: {sorted(allowed)}",
            details={field_name: "invalid_choice"},
        )


def text_field(data: dict, field: str, max_len: int, *, required: bool = False) -> str:
    value = data.get(field)
    value = "" if value is None else str(value).strip()
    if required and not value:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if len(value) > max_len:
        raise ValidationError(
            f"{field} exceeds maximum length of {max_len} characters",
            details={field: "too_long"},
        )
    return value


def number_field(data: dict, field: str, *, minimum=None, maximum=None, integer=False):
    """Return the field as int/float, None when absent or empty."""
    value = data.get(field)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"})
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "invalid"}) from None
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: "out_of_range"})
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={field: "out_of_range"})
    return number


def date_field(data: dict, field: str):
    try:
        return parse_date_input(data.get(field))
    except ValueError as exc:
        raise ValidationError(str(exc), details={field: "invalid_date"}) from None


def id_field(data: dict, field: str, *, required: bool = True) -> int | None:
    value = data.get(field)
    if value is None or value == "":
        if not required:
            return None
        raise ValidationError(f"{field} is required", details={field: "required"})
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id", details={field: "invalid"})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer id", details={field: "invalid"}) from None


def tags_field(data: dict, field: str = "tags") -> list[str]:
    """Accept a list of strings or a comma-separated string; drop blanks and duplicates."""
    value = data.get(field)
    if value is None or value == "":
        return []
    items = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, (list, tuple)):
        raise ValidationError(f"{field} must be a list of strings", details={field: "invalid"})
    tags = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags
