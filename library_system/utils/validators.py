import re
from datetime import datetime

from library_system.errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]{7,20}$")
ISBN_RE = re.compile(r"^(?:ISBN(?:-1[03])?:? )?[0-9X\- ]{10,17}$")


def require_fields(data: dict, *names):
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        raise ValidationError("Validation failed", errors=[f"{n} is required" for n in missing])


def clean_str(value, field: str, max_len: int = None, required: bool = False):
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    value = str(value).strip()
    if required and not value:
        raise ValidationError(f"{field} is required")
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{field} cannot exceed {max_len} characters")
    return value


def to_int(value, field: str, minimum: int = None, maximum: int = None, default=None, required: bool = False):
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return default
    # JSON true/false and 1.9 would otherwise pass through int()
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be an integer")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return number


def to_bool(value, field: str):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValidationError(f"{field} must be a boolean")


def one_of(value, field: str, choices):
    if value is None or value == "":
        return None
    if value not in choices:
        raise ValidationError(f"Invalid {field}")
    return value


def to_datetime(value, field: str):
    """ISO-8601 -> naive UTC datetime."""
    if value is None or value == "":
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Valid {field} is required")
    if parsed.tzinfo is not None:
        try:
            parsed = (parsed - parsed.utcoffset()).replace(tzinfo=None)
        except OverflowError:
            raise ValidationError(f"Valid {field} is required")
    return parsed


def email(value) -> str:
    value = clean_str(value, "email", 255, required=True).lower()
    if not EMAIL_RE.match(value):
        raise ValidationError("Valid email is required")
    return value


def phone(value) -> str:
    value = clean_str(value, "phone", 32, required=True)
    if not PHONE_RE.match(value):
        raise ValidationError("Valid phone number is required")
    return value


def isbn(value) -> str:
    value = clean_str(value, "isbn", 32, required=True)
    digits = re.sub(r"[^0-9X]", "", value.upper().replace("ISBN", ""))
    if not ISBN_RE.match(value.upper()) or len(digits) not in (10, 13):
        raise ValidationError("Please enter a valid ISBN")
    return value


def password(value, field: str = "password") -> str:
    if not value or len(str(value)) < 6:
        raise ValidationError(f"{field} must be at least 6 characters")
    return str(value)


def pagination(args) -> tuple:
    page = to_int(args.get("page"), "page", minimum=1, default=1)
    limit = to_int(args.get("limit"), "limit", minimum=1, maximum=100, default=10)
    return page, limit


def pagination_meta(pager, total_key: str) -> dict:
    return {
        "current_page": pager.page,
        "total_pages": pager.pages,
        total_key: pager.total,
        "has_next_page": pager.has_next,
        "has_prev_page": pager.has_prev,
    }
