"""Integration tests for attendance submission and review."""

from collections.abc import AsyncGenerator

import httpx
import pytest

from salesdesk.api.main import app
from salesdesk.api.routes.attendance import get_http_client
from salesdesk.models.user import UserDB


def submission(**overrides) -> dict:
    payload = {
        "visitReport": "Met the site engineer at the Kharadi water works",
        "timelineUrl": "https://maps.app.goo.gl/abc123",
        "selfieUrl": "https://cdn.example.com/selfies/rahul.jpg",
        "clientLat": 18.55,
        "clientLng": 73.94,
        "clientCity": "Pune",
    }
    payload.update(overrides)
    return payload


@pytest.mark.integration
@pytest.mark.asyncio
class TestSubmitAttendance:
    """Tests for POST /api/attendance."""

    async def test_submit(self, login, sales_user: UserDB) -> None:
        """Test a valid submission is stored as SUBMITTED for today."""
        client = login(sales_user)

        response = await client.post("/api/attendance", json=submission())

        assert response.status_code == 201
        body = response.json()
        attendance = body["attendance"]
        assert attendance["status"] == "SUBMITTED"
        assert attendance["userId"] == sales_user.id
        assert attendance["photoUrl"] == "https://cdn.example.com/selfies/rahul.jpg"
        assert len(attendance["recordHash"]) == 64
        assert attendance["user"]["employeeCode"] == "EMP042"
        assert body["validation"]["metadata"]["timelineUrl"]["domain"] == "maps.app.goo.gl"
        assert body["validation"]["metadata"]["timelineUrl"]["isValid"] is True

    async def test_unreachable_timeline_warns(self, login, sales_user: UserDB) -> None:
        """Test a timeline URL that fails its HEAD check is accepted with a warning."""

        async def broken_links() -> AsyncGenerator[httpx.AsyncClient, None]:
            transport = httpx.MockTransport(lambda request: httpx.Response(404, request=request))
            async with httpx.AsyncClient(transport=transport) as client:
                yield client

        client = login(sales_user)
        app.dependency_overrides[get_http_client] = broken_links

        response = await client.post("/api/attendance", json=submission())

        assert response.status_code == 201
        body = response.json()
        assert "Timeline URL is not accessible" in body["validation"]["warnings"]
        assert body["validation"]["metadata"]["timelineUrl"]["isValid"] is False

    async def test_duplicate_submission(self, login, sales_user: UserDB) -> None:
        """Test a second submission on the same day conflicts."""
        client = login(sales_user)
        await client.post("/api/attendance", json=submission())

        response = await client.post("/api/attendance", json=submission())

        assert response.status_code == 409
        assert response.json() == {"error": "Attendance already submitted for today"}

    async def test_validation_errors(self, login, sales_user: UserDB) -> None:
        """Test missing evidence is reported field by field."""
        client = login(sales_user)

        response = await client.post(
            "/api/attendance",
            json=submission(visitReport="ok", selfieUrl=None, timelineUrl="https://example.com/route"),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert "Selfie is required" in body["details"]
        assert "Timeline URL must be from Google Maps" in body["details"]
        assert any("at least 3 characters" in error for error in body["details"])

    async def test_new_follow_up_requires_description(self, login, sales_user: UserDB) -> None:
        """Test a new follow-up without a description is rejected."""
        client = login(sales_user)

        response = await client.post(
            "/api/attendance",
            json=submission(followUp={"mode": "new", "actionType": "CALL"}),
        )

        assert response.status_code == 400

    async def test_unknown_existing_follow_up(self, login, sales_user: UserDB) -> None:
        """Test linking a follow-up that does not exist is forbidden."""
        client = login(sales_user)

        response = await client.post(
            "/api/attendance",
            json=submission(followUp={"mode": "existing", "id": 999}),
        )

        assert response.status_code == 403


@pytest.mark.integration
@pytest.mark.asyncio
class TestListAttendance:
    """Tests for GET /api/attendance."""

    async def test_admin_view_reports_missing_users(
        self, login, admin_user: UserDB, sales_user: UserDB, other_user: UserDB
    ) -> None:
        """Test admins see every record and who has not submitted."""
        await login(sales_user).post("/api/attendance", json=submission())
        client = login(admin_user)

        response = await client.get("/api/attendance")

        assert response.status_code == 200
        body = response.json()
        assert body["isAdminView"] is True
        assert [record["userId"] for record in body["attendance"]] == [sales_user.id]
        assert [user["email"] for user in body["missingUsers"]] == ["meera@example.com"]
        assert body["summary"]["submitted"] == 1
        assert body["summary"]["missing"] == 1
        assert body["summary"]["totalUsers"] == 3

    async def test_user_only_sees_own_records(
        self, login, sales_user: UserDB, other_user: UserDB
    ) -> None:
        """Test a non-admin's userId filter is ignored."""
        await login(other_user).post("/api/attendance", json=submission())
        client = login(sales_user)

        response = await client.get("/api/attendance", params={"userId": other_user.id})

        body = response.json()
        assert body["isAdminView"] is False
        assert body["attendance"] == []
        assert body["missingUsers"] == []

    async def test_invalid_date(self, login, sales_user: UserDB) -> None:
        """Test an unparseable date filter is rejected."""
        response = await login(sales_user).get("/api/attendance", params={"date": "yesterday"})

        assert response.status_code == 400


@pytest.mark.integration
@pytest.mark.asyncio
class TestReviewAttendance:
    """Tests for the admin review queue."""

    async def test_approve_flow(self, login, admin_user: UserDB, sales_user: UserDB) -> None:
        """Test approved records leave the SUBMITTED queue."""
        created = await login(sales_user).post("/api/attendance", json=submission())
        attendance_id = created.json()["attendance"]["id"]
        client = login(admin_user)

        queue = await client.get("/api/attendance/approve", params={"status": "SUBMITTED"})
        assert [record["id"] for record in queue.json()["attendances"]] == [attendance_id]

        response = await client.post(
            "/api/attendance/approve",
            json={"attendanceIds": [attendance_id], "action": "approve", "notes": "Verified"},
        )
        assert response.status_code == 200
        assert response.json()["updatedCount"] == 1
        assert response.json()["message"] == "Successfully approved 1 attendance record(s)"

        queue = await client.get("/api/attendance/approve", params={"status": "SUBMITTED"})
        assert queue.json()["attendances"] == []
        assert queue.json()["summary"]["APPROVED"] == 1
        assert queue.json()["summary"]["SUBMITTED"] == 0

        approved = await client.get("/api/attendance/approve", params={"status": "APPROVED"})
        record = approved.json()["attendances"][0]
        assert record["reviewNotes"] == "Verified"
        assert record["reviewer"]["email"] == "admin@example.com"
        assert record["approvedAt"] is not None

    async def test_reapprove_is_noop(self, login, admin_user: UserDB, sales_user: UserDB) -> None:
        """Test records already in the target status are not counted."""
        created = await login(sales_user).post("/api/attendance", json=submission())
        attendance_id = created.json()["attendance"]["id"]
        client = login(admin_user)
        payload = {"attendanceIds": [attendance_id], "action": "reject"}

        await client.post("/api/attendance/approve", json=payload)
        response = await client.post("/api/attendance/approve", json=payload)

        assert response.json()["updatedCount"] == 0

    async def test_invalid_action(self, login, admin_user: UserDB) -> None:
        """Test only approve and reject are accepted."""
        response = await login(admin_user).post(
            "/api/attendance/approve", json={"attendanceIds": [1], "action": "archive"}
        )

        assert response.status_code == 400

    async def test_requires_admin(self, login, sales_user: UserDB) -> None:
        """Test non-admins cannot review."""
        client = login(sales_user)

        assert (await client.get("/api/attendance/approve")).status_code == 403
        response = await client.post(
            "/api/attendance/approve", json={"attendanceIds": [1], "action": "approve"}
        )
        assert response.status_code == 403
