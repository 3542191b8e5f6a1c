"""Unit tests for attendance validation helpers."""

from datetime import date, datetime

import httpx
import pytest

from salesdesk.services.attendance_validation import (
    FollowUpSelectionError,
    append_attendance_link_note,
    check_timeline_url,
    detect_tampering,
    generate_record_hash,
    hash_device_fingerprint,
    is_late_submission,
    is_within_submission_window,
    ist_day_bounds,
    normalize_follow_up,
    parse_optional_id,
    today_ist,
    validate_attendance_submission,
    validate_exif_data,
    validate_geolocation,
)

MORNING_UTC = datetime(2026, 3, 15, 3, 0)  # 08:30 IST


@pytest.fixture
def valid_record() -> dict:
    return {
        "note": "Visited the Pune site office",
        "selfieUrl": "https://cdn.example.com/selfie.jpg",
        "timelineUrl": "https://maps.app.goo.gl/abc123",
    }


@pytest.mark.unit
class TestIstDays:
    """Tests for IST day handling."""

    def test_ist_day_bounds(self) -> None:
        """Test an IST day starts at 18:30 UTC the previous day."""
        start, end = ist_day_bounds(date(2026, 3, 15))

        assert start == datetime(2026, 3, 14, 18, 30)
        assert end == datetime(2026, 3, 15, 18, 30)

    def test_today_ist_rolls_over_before_utc(self) -> None:
        assert today_ist(datetime(2026, 3, 14, 19, 0)) == date(2026, 3, 15)

    def test_submission_window(self) -> None:
        """Test the 05:00 to 13:00 IST window."""
        assert is_within_submission_window(MORNING_UTC)
        assert is_late_submission(datetime(2026, 3, 15, 9, 0))
        assert not is_late_submission(datetime(2026, 3, 14, 22, 0))
        assert not is_within_submission_window(datetime(2026, 3, 14, 22, 0))


@pytest.mark.unit
class TestSubmissionValidation:
    """Tests for submission validation."""

    def test_valid_submission(self, valid_record: dict) -> None:
        result = validate_attendance_submission(valid_record, now=MORNING_UTC)

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []
        assert result.metadata["timelineUrl"] == {"isValid": None, "domain": "maps.app.goo.gl"}

    def test_missing_evidence(self) -> None:
        """Test every missing piece of evidence is reported."""
        result = validate_attendance_submission({"note": "ok"}, now=MORNING_UTC)

        assert not result.is_valid
        assert result.errors == [
            "Visit report is required and must be at least 3 characters long",
            "Selfie is required",
            "Either timeline URL or screenshot is required",
        ]

    def test_screenshot_replaces_timeline_url(self, valid_record: dict) -> None:
        """Test a screenshot is enough without a timeline URL."""
        valid_record.pop("timelineUrl")
        valid_record["timelineScreenshotUrl"] = "https://cdn.example.com/timeline.png"

        assert validate_attendance_submission(valid_record, now=MORNING_UTC).is_valid

    def test_non_google_timeline_url(self, valid_record: dict) -> None:
        valid_record["timelineUrl"] = "https://example.com/map"

        result = validate_attendance_submission(valid_record, now=MORNING_UTC)

        assert result.errors == ["Timeline URL must be from Google Maps"]

    def test_warnings(self, valid_record: dict) -> None:
        """Test late submissions and odd devices only warn."""
        result = validate_attendance_submission(
            valid_record,
            device_fingerprint={"screenWidth": 200, "screenHeight": 200, "cookieEnabled": False},
            now=datetime(2026, 3, 15, 9, 0),
        )

        assert result.is_valid
        assert result.warnings == [
            "Submission is after the standard time window",
            "Device screen size is unusually small",
            "Cookies are disabled - may affect functionality",
        ]


@pytest.mark.unit
@pytest.mark.asyncio
class TestTimelineUrlCheck:
    """Tests for the timeline URL reachability check."""

    async def test_reachable_url(self) -> None:
        """Test a successful HEAD marks the URL valid and records where it resolved."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "HEAD"
            return httpx.Response(200, request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            metadata, warning = await check_timeline_url("https://maps.app.goo.gl/abc123", client)

        assert warning is None
        assert metadata == {
            "isValid": True,
            "domain": "maps.app.goo.gl",
            "resolvedUrl": "https://maps.app.goo.gl/abc123",
        }

    async def test_unreachable_url(self) -> None:
        """Test an error status is reported as a warning."""
        transport = httpx.MockTransport(lambda request: httpx.Response(404, request=request))

        async with httpx.AsyncClient(transport=transport) as client:
            metadata, warning = await check_timeline_url("https://maps.app.goo.gl/gone", client)

        assert metadata["isValid"] is False
        assert warning == "Timeline URL is not accessible"

    async def test_network_failure(self) -> None:
        """Test a connection failure leaves validity unknown."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            metadata, warning = await check_timeline_url("https://maps.app.goo.gl/abc123", client)

        assert metadata == {"isValid": None, "domain": "maps.app.goo.gl"}
        assert warning == "Could not validate timeline URL"


@pytest.mark.unit
class TestIntegrityChecks:
    """Tests for EXIF, hashing and geolocation checks."""

    def test_exif_tolerance(self) -> None:
        """Test photos must be taken within 15 minutes of submission."""
        assert validate_exif_data(None, MORNING_UTC)
        assert validate_exif_data("2026-03-15T03:10:00Z", MORNING_UTC)
        assert not validate_exif_data("2026-03-15T03:20:00Z", MORNING_UTC)
        assert validate_exif_data("not a date", MORNING_UTC)

    def test_record_hash_is_canonical(self) -> None:
        """Test key order and empty fields do not change the hash."""
        first = generate_record_hash({"userId": 1, "note": "Visit"})
        second = generate_record_hash({"note": "Visit", "userId": 1, "selfieUrl": None})

        assert first == second
        assert len(first) == 64
        assert detect_tampering({"userId": 1, "note": "Edited"}, first)
        assert not detect_tampering({"userId": 1, "note": "Visit"}, first)

    def test_fingerprint_hash_ignores_extra_keys(self) -> None:
        base = {"userAgent": "Mozilla", "screenWidth": 390}

        assert hash_device_fingerprint(base) == hash_device_fingerprint({**base, "cookieEnabled": True})

    def test_geolocation_bounds(self) -> None:
        assert validate_geolocation(18.5, 73.8)["isValid"]
        assert not validate_geolocation(91, 0)["isValid"]


@pytest.mark.unit
class TestFollowUpSelection:
    """Tests for follow-up normalisation."""

    def test_no_follow_up(self) -> None:
        assert normalize_follow_up(None) is None
        assert normalize_follow_up("new") is None

    def test_existing_follow_up(self) -> None:
        assert normalize_follow_up({"mode": "existing", "id": "12"}) == {"type": "existing", "id": 12}

    def test_existing_follow_up_requires_id(self) -> None:
        with pytest.raises(FollowUpSelectionError, match="Please select a valid follow-up for today."):
            normalize_follow_up({"mode": "existing", "id": "abc"})

    def test_new_follow_up(self) -> None:
        """Test a new follow-up is normalised to UTC with a valid priority."""
        result = normalize_follow_up(
            {
                "followUpType": "CALL",
                "description": "Confirm drawings",
                "nextActionDate": "2026-03-16T10:00:00+05:30",
                "priority": "high",
                "leadId": "5",
            }
        )

        assert result["type"] == "new"
        assert result["follow_up_date"] == datetime(2026, 3, 16, 4, 30)
        assert result["priority"] == "HIGH"
        assert result["lead_id"] == 5
        assert result["opportunity_id"] is None

    def test_new_follow_up_defaults_priority(self) -> None:
        result = normalize_follow_up(
            {"actionType": "EMAIL", "actionDescription": "Send brochure", "followUpDate": "2026-03-16", "priority": "urgent"}
        )

        assert result["priority"] == "MEDIUM"

    @pytest.mark.parametrize(
        ("payload", "message"),
        [
            ({"followUpType": "CALL"}, "Follow-up details are incomplete."),
            (
                {"followUpType": "CALL", "description": "x", "nextActionDate": "someday"},
                "Follow-up schedule is invalid.",
            ),
        ],
    )
    def test_invalid_new_follow_up(self, payload: dict, message: str) -> None:
        with pytest.raises(FollowUpSelectionError, match=message):
            normalize_follow_up(payload)

    def test_link_note_is_appended_once(self) -> None:
        """Test the attendance link note is added a single time."""
        note = append_attendance_link_note(None, datetime(2026, 3, 15, 4, 0))
        assert note == "Linked with attendance submission on Sun, 15 Mar, 09:30 AM"

        combined = append_attendance_link_note("Call back", datetime(2026, 3, 15, 4, 0))
        assert combined == f"Call back\n\n{note}"
        assert append_attendance_link_note(combined, datetime(2026, 3, 15, 4, 0)) == combined

    def test_parse_optional_id(self) -> None:
        assert parse_optional_id("7") == 7
        assert parse_optional_id(True) is None
        assert parse_optional_id("abc") is None
        assert parse_optional_id("") is None
