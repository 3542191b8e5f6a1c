"""Attendance submission checks, IST day handling and tamper hashes."""

import hashlib
import json
import re
from datetime import date, datetime, time, timedelta
from urllib.parse import urlsplit

import httpx
from pydantic import Field

from salesdesk.models.crm import UrgencyLevel
from salesdesk.models.schemas import CamelModel

IST_OFFSET = timedelta(hours=5, minutes=30)
SUBMISSION_WINDOW_START = time(5, 0)
SUBMISSION_WINDOW_END = time(13, 0)
EXIF_TIME_TOLERANCE = timedelta(minutes=15)
MAX_CLOCK_SKEW = timedelta(hours=24)
MIN_VISIT_REPORT_LENGTH = 3
TIMELINE_CHECK_TIMEOUT = 5.0

TIMELINE_URL_PATTERN = re.compile(r"^https://(www\.)?(google\.com/maps|maps\.app\.goo\.gl)")

FINGERPRINT_HASH_KEYS = (
    "userAgent",
    "timezone",
    "language",
    "platform",
    "screenWidth",
    "screenHeight",
    "colorDepth",
    "pixelRatio",
)

SERVER_FINGERPRINT = {
    "userAgent": "server",
    "timezone": "UTC",
    "language": "en",
    "platform": "server",
    "cookieEnabled": False,
    "screenWidth": 1920,
    "screenHeight": 1080,
    "colorDepth": 24,
    "pixelRatio": 1,
}


class ValidationResult(CamelModel):
    is_valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)


class FollowUpSelectionError(ValueError):
    """The follow-up attached to an attendance submission is unusable."""


def to_ist(moment: datetime) -> datetime:
    """Shift a naive UTC datetime to Indian Standard Time."""
    return moment + IST_OFFSET


def from_ist(moment: datetime) -> datetime:
    return moment - IST_OFFSET


def today_ist(now: datetime | None = None) -> date:
    return to_ist(now or datetime.utcnow()).date()


def ist_day_bounds(day: date) -> tuple[datetime, datetime]:
    """UTC start (inclusive) and end (exclusive) of an IST calendar day."""
    start = from_ist(datetime.combine(day, time.min))
    return start, start + timedelta(days=1)


def is_within_submission_window(now: datetime | None = None) -> bool:
    local_time = to_ist(now or datetime.utcnow()).time()
    return SUBMISSION_WINDOW_START <= local_time <= SUBMISSION_WINDOW_END


def is_late_submission(now: datetime | None = None) -> bool:
    """True after the 13:00 IST cutoff; early submissions are not late."""
    now = now or datetime.utcnow()
    if is_within_submission_window(now):
        return False
    return to_ist(now).time() > SUBMISSION_WINDOW_END


def validate_attendance_submission(
    record: dict, device_fingerprint: dict | None = None, now: datetime | None = None
) -> ValidationResult:
    """Check a submission for required evidence and suspicious signals.

    Args:
        record: Submission fields (``note``, ``selfieUrl``, ``timelineUrl``,
            ``timelineScreenshotUrl``)
        device_fingerprint: Client fingerprint, if any
        now: Submission time in UTC

    Returns:
        Errors block the submission; warnings are reported back to the client.
    """
    errors = []
    warnings = []
    metadata = {}

    note = (record.get("note") or "").strip()
    if len(note) < MIN_VISIT_REPORT_LENGTH:
        errors.append("Visit report is required and must be at least 3 characters long")

    if not record.get("selfieUrl"):
        errors.append("Selfie is required")

    timeline_url = record.get("timelineUrl") or ""
    screenshot_url = record.get("timelineScreenshotUrl") or ""
    if not timeline_url.strip() and not screenshot_url.strip():
        errors.append("Either timeline URL or screenshot is required")

    if timeline_url:
        if not TIMELINE_URL_PATTERN.match(timeline_url):
            errors.append("Timeline URL must be from Google Maps")
        else:
            metadata["timelineUrl"] = {"isValid": None, "domain": urlsplit(timeline_url).hostname}

    if is_late_submission(now):
        warnings.append("Submission is after the standard time window")

    if device_fingerprint:
        metadata["deviceFingerprint"] = device_fingerprint
        if (device_fingerprint.get("screenWidth") or 0) < 320 or (device_fingerprint.get("screenHeight") or 0) < 240:
            warnings.append("Device screen size is unusually small")
        if not device_fingerprint.get("cookieEnabled"):
            warnings.append("Cookies are disabled - may affect functionality")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings, metadata=metadata)


async def check_timeline_url(url: str, client: httpx.AsyncClient) -> tuple[dict, str | None]:
    """Check that a timeline URL answers a HEAD request.

    Returns:
        Timeline metadata and a warning, if any. ``isValid`` stays None when
        the URL could not be reached at all.
    """
    domain = urlsplit(url).hostname
    try:
        response = await client.head(url, follow_redirects=True)
    except httpx.HTTPError:
        return {"isValid": None, "domain": domain}, "Could not validate timeline URL"

    metadata = {"isValid": response.is_success, "domain": domain, "resolvedUrl": str(response.url)}
    return metadata, None if response.is_success else "Timeline URL is not accessible"


def generate_device_fingerprint() -> dict:
    """Fingerprint used when the client did not send one."""
    return dict(SERVER_FINGERPRINT)


def hash_device_fingerprint(fingerprint: dict) -> str:
    payload = json.dumps({key: fingerprint.get(key) for key in FINGERPRINT_HASH_KEYS}, separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


def validate_exif_data(taken_at: str | datetime | None, submission_time: datetime) -> bool:
    """Whether the photo timestamp lies within tolerance of the submission.

    Missing or unparseable timestamps are accepted.
    """
    if not taken_at:
        return True
    if isinstance(taken_at, str):
        try:
            taken_at = datetime.fromisoformat(taken_at.replace("Z", "+00:00"))
        except ValueError:
            return True
    if taken_at.tzinfo is not None:
        taken_at = taken_at.replace(tzinfo=None) - (taken_at.utcoffset() or timedelta())
    return abs(submission_time - taken_at) <= EXIF_TIME_TOLERANCE


def generate_record_hash(record: dict) -> str:
    """SHA-256 over the canonical, key-sorted submission fields."""
    canonical = {
        "userId": record.get("userId"),
        "dateIST": record.get("dateIST"),
        "note": record.get("note"),
        "timelineUrl": record.get("timelineUrl"),
        "timelineScreenshotUrl": record.get("timelineScreenshotUrl"),
        "selfieUrl": record.get("selfieUrl"),
        "clientLat": record.get("clientLat"),
        "clientLng": record.get("clientLng"),
        "submittedAtUTC": record.get("submittedAtUTC"),
    }
    payload = json.dumps(
        {key: value for key, value in canonical.items() if value is not None},
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode()).hexdigest()


def detect_tampering(record: dict, stored_hash: str) -> bool:
    return generate_record_hash(record) != stored_hash


def validate_geolocation(lat: float, lng: float) -> dict:
    return {"isValid": -90 <= lat <= 90 and -180 <= lng <= 180, "accuracy": 100}


def _parse_datetime(value) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None) - (parsed.utcoffset() or timedelta())
    return parsed


def parse_optional_id(value) -> int | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def normalize_follow_up(payload) -> dict | None:
    """Normalise the follow-up attached to an attendance submission.

    Returns:
        None when no follow-up was sent, ``{"type": "existing", "id": ...}``
        to link an existing follow-up, or ``{"type": "new", ...}`` with the
        fields of a follow-up to create.

    Raises:
        FollowUpSelectionError: If the selection or details are unusable
    """
    if not isinstance(payload, dict):
        return None

    mode = payload.get("mode") if isinstance(payload.get("mode"), str) else "new"

    if mode == "existing":
        candidate = payload.get("id", payload.get("followUpId"))
        follow_up_id = parse_optional_id(candidate) if isinstance(candidate, (int, str)) else None
        if not follow_up_id:
            raise FollowUpSelectionError("Please select a valid follow-up for today.")
        return {"type": "existing", "id": follow_up_id}

    action_type = payload.get("followUpType") or payload.get("actionType")
    description = payload.get("description") or payload.get("actionDescription")
    next_action_date = payload.get("nextActionDate") or payload.get("followUpDate")

    if not action_type or not description or not next_action_date:
        raise FollowUpSelectionError("Follow-up details are incomplete.")

    scheduled = _parse_datetime(next_action_date)
    if scheduled is None:
        raise FollowUpSelectionError("Follow-up schedule is invalid.")

    raw_priority = payload.get("priority") or payload.get("urgencyLevel") or "MEDIUM"
    priority = raw_priority.upper() if isinstance(raw_priority, str) else "MEDIUM"
    if priority not in {level.value for level in UrgencyLevel}:
        priority = UrgencyLevel.MEDIUM.value

    return {
        "type": "new",
        "action_type": action_type,
        "description": description,
        "follow_up_date": scheduled,
        "priority": priority,
        "notes": payload.get("notes"),
        "lead_id": parse_optional_id(payload.get("leadId")),
        "opportunity_id": parse_optional_id(payload.get("opportunityId")),
        "project_id": parse_optional_id(payload.get("projectId")),
        "immediate_sale_id": parse_optional_id(payload.get("immediateSaleId")),
    }


def append_attendance_link_note(existing_notes: str | None, moment: datetime) -> str:
    """Append the attendance link note once."""
    link_note = f"Linked with attendance submission on {to_ist(moment).strftime('%a, %d %b, %I:%M %p')}"
    if not existing_notes:
        return link_note
    if link_note in existing_notes:
        return existing_notes
    return f"{existing_notes}\n\n{link_note}"
