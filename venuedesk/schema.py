from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .errors import ConflictError, ValidationError

VALID_SEX_VALUES = ("female", "male", "ladyboy")
MAX_PHOTOS = 5
MAX_NATIONALITIES = 2

WORKER_FIELDS = (
    "name",
    "nickname",
    "age",
    "sex",
    "nationality",
    "description",
    "photos",
    "social_media",
    "is_freelance",
    "user_id",
)
WORKER_REQUIRED_FIELDS = ("name", "sex")

VENUE_FIELDS = (
    "name",
    "address",
    "zone",
    "category",
    "description",
    "phone",
    "website",
    "logo_url",
    "ladydrink",
    "barfine",
    "rooms",
)
VENUE_REQUIRED_FIELDS = ("name", "address", "zone", "category")

# Keys that carry association intent rather than worker columns.
ASSOCIATION_KEYS = ("venue_ids", "venue_id")


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _valid_url(v: str) -> bool:
    try:
        p = urlparse(v)
        return p.scheme in ("http", "https") and bool(p.netloc)
    except Exception:
        return False


def _check_required(data: Dict[str, Any], required, errors: List[str]) -> None:
    for f in required:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")


def validate_worker_payload(data: Dict[str, Any], partial: bool = False) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    With partial=True only the fields present are checked (edit payloads).
    """
    errors: List[str] = []

    if not partial:
        _check_required(data, WORKER_REQUIRED_FIELDS, errors)
    else:
        for f in WORKER_REQUIRED_FIELDS:
            if f in data and not _is_non_empty_str(data[f]):
                errors.append(f"Field '{f}' must be a non-empty string")

    if data.get("sex") is not None and _is_non_empty_str(data["sex"]):
        if data["sex"] not in VALID_SEX_VALUES:
            errors.append(f"Field 'sex' must be one of: {', '.join(VALID_SEX_VALUES)}")

    age = data.get("age")
    if age is not None and (isinstance(age, bool) or not isinstance(age, int) or not 18 <= age <= 99):
        errors.append("Field 'age' must be an integer between 18 and 99")

    nationality = data.get("nationality")
    if nationality is not None:
        if not isinstance(nationality, list):
            errors.append("Field 'nationality' must be a list")
        elif not nationality:
            errors.append("Field 'nationality' cannot be empty (omit it instead)")
        elif len(nationality) > MAX_NATIONALITIES:
            errors.append(f"At most {MAX_NATIONALITIES} nationalities allowed")
        elif not all(_is_non_empty_str(n) for n in nationality):
            errors.append("Each nationality must be a non-empty string")

    photos = data.get("photos")
    if photos is not None:
        if not isinstance(photos, list):
            errors.append("Field 'photos' must be a list")
        elif len(photos) > MAX_PHOTOS:
            errors.append(f"At most {MAX_PHOTOS} photos allowed")
        elif not all(isinstance(p, str) and _valid_url(p) for p in photos):
            errors.append("Each photo must be an absolute http(s) URL")

    social = data.get("social_media")
    if social is not None and not isinstance(social, dict):
        errors.append("Field 'social_media' must be an object")

    if "is_freelance" in data and not isinstance(data["is_freelance"], bool):
        errors.append("Field 'is_freelance' must be a boolean")

    for f in ("nickname", "description", "user_id"):
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    return errors


def validate_venue_payload(data: Dict[str, Any], partial: bool = False) -> List[str]:
    """Same contract as validate_worker_payload, for venues."""
    errors: List[str] = []

    if not partial:
        _check_required(data, VENUE_REQUIRED_FIELDS, errors)
    else:
        for f in VENUE_REQUIRED_FIELDS:
            if f in data and not _is_non_empty_str(data[f]):
                errors.append(f"Field '{f}' must be a non-empty string")

    for f in ("website", "logo_url"):
        if _is_non_empty_str(data.get(f)) and not _valid_url(data[f]):
            errors.append(f"Field '{f}' must be a valid absolute URL (scheme + host)")

    for f in VENUE_FIELDS:
        if f in data and data[f] is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    return errors


def _unknown_fields(data: Dict[str, Any], allowed) -> List[str]:
    return sorted(k for k in data if k not in allowed)


def parse_venue_ids(data: Dict[str, Any]) -> Optional[List[str]]:
    """
    Extract the association intent from a worker payload.

    Returns None when neither key is present (no change requested), an
    empty list for an explicit clear, otherwise the distinct venue ids.
    """
    if not any(k in data for k in ASSOCIATION_KEYS):
        return None

    many = data.get("venue_ids")
    if many:
        if not isinstance(many, list) or not all(_is_non_empty_str(v) for v in many):
            raise ValidationError("Field 'venue_ids' must be a list of venue ids")
        venue_ids = list(many)
    elif data.get("venue_id"):
        if not _is_non_empty_str(data["venue_id"]):
            raise ValidationError("Field 'venue_id' must be a venue id")
        venue_ids = [data["venue_id"]]
    else:
        venue_ids = []

    seen = set()
    for venue_id in venue_ids:
        if venue_id in seen:
            raise ConflictError(f"Duplicate association target: {venue_id}")
        seen.add(venue_id)
    return venue_ids


@dataclass
class WorkerChanges:
    """
    Typed worker update command.

    `fields` holds plain column updates; `venue_ids` is the association
    intent, None meaning "leave associations alone".
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    venue_ids: Optional[List[str]] = None

    @property
    def touches_associations(self) -> bool:
        return self.venue_ids is not None

    @property
    def is_freelance(self) -> Optional[bool]:
        return self.fields.get("is_freelance")


def parse_worker_changes(changes: Dict[str, Any], partial: bool = True) -> WorkerChanges:
    """Validate a worker payload and split it into a WorkerChanges command."""
    if not isinstance(changes, dict):
        raise ValidationError("Worker changes must be an object")

    unknown = _unknown_fields(changes, WORKER_FIELDS + ASSOCIATION_KEYS)
    if unknown:
        raise ValidationError(f"Unknown worker field(s): {', '.join(unknown)}")

    fields = {k: v for k, v in changes.items() if k not in ASSOCIATION_KEYS}
    errors = validate_worker_payload(fields, partial=partial)
    if errors:
        raise ValidationError("; ".join(errors))

    return WorkerChanges(fields=fields, venue_ids=parse_venue_ids(changes))


def parse_venue_changes(changes: Dict[str, Any], partial: bool = True) -> Dict[str, Any]:
    if not isinstance(changes, dict):
        raise ValidationError("Venue changes must be an object")

    unknown = _unknown_fields(changes, VENUE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown venue field(s): {', '.join(unknown)}")

    errors = validate_venue_payload(changes, partial=partial)
    if errors:
        raise ValidationError("; ".join(errors))
    return dict(changes)
