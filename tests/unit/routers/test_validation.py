"""Request validation, authentication and error envelope tests."""

from __future__ import annotations

import pytest

from tests.helpers import auth, task_payload
from tests.unit.routers.conftest import create_task


class TestAuthentication:
    """AUTH-01 to AUTH-03: Bearer token handling."""

    @pytest.mark.unit
    async def test_auth_01_missing_header(self, client):
        """AUTH-01: Protected endpoints return 401 without a token."""
        response = await client.get("/tasks/mine")
        assert response.status_code == 401
        assert response.json() == {
            "error": "UNAUTHORIZED",
            "message": "Not authorized, no token",
            "details": {},
        }

    @pytest.mark.unit
    async def test_auth_02_wrong_scheme(self, client):
        """AUTH-02: Non-Bearer schemes are rejected."""
        response = await client.get("/tasks/mine", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert response.status_code == 401
        assert response.json()["message"] == "Authorization header must use Bearer scheme"

    @pytest.mark.unit
    async def test_auth_03_bad_token_on_public_listing(self, client):
        """AUTH-03: A rejected token on an optional-auth endpoint still returns 401."""
        response = await client.get("/tasks", headers=auth("tok-nobody"))
        assert response.status_code == 401


class TestRequestValidation:
    """VAL-01 to VAL-06: Body size, content type and JSON parsing."""

    @pytest.mark.unit
    async def test_val_01_payload_too_large(self, client):
        """VAL-01: Bodies above the configured limit return 413."""
        response = await client.post(
            "/tasks",
            json=task_payload(description="x" * 5000),
            headers=auth("tok-alice"),
        )
        assert response.status_code == 413
        assert response.json()["error"] == "PAYLOAD_TOO_LARGE"

    @pytest.mark.unit
    async def test_val_02_wrong_content_type(self, client):
        """VAL-02: Non-JSON bodies on JSON endpoints return 415."""
        response = await client.post(
            "/bids",
            content=b"task_id=t-1&amount=5",
            headers={**auth("tok-bob"), "Content-Type": "application/x-www-form-urlencoded"},
        )
        assert response.status_code == 415
        assert response.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"

    @pytest.mark.unit
    async def test_val_03_invalid_json(self, client):
        """VAL-03: Malformed JSON returns INVALID_JSON."""
        response = await client.post(
            "/reviews",
            content=b"{not json",
            headers={**auth("tok-alice"), "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"

    @pytest.mark.unit
    async def test_val_04_json_array_body(self, client):
        """VAL-04: A JSON body that is not an object returns INVALID_JSON."""
        response = await client.post("/tasks", json=["not", "an", "object"], headers=auth("tok-alice"))
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"

    @pytest.mark.unit
    async def test_val_05_empty_body_on_optional_endpoint(self, client):
        """VAL-05: Endpoints with optional bodies accept an empty request."""
        task_id = (await create_task(client)).json()["task_id"]
        bid_id = (
            await client.post(
                "/bids",
                json={"task_id": task_id, "amount": 10, "message": "hi"},
                headers=auth("tok-bob"),
            )
        ).json()["bid_id"]
        response = await client.put(f"/bids/{bid_id}/reject", headers=auth("tok-alice"))
        assert response.status_code == 200

    @pytest.mark.unit
    async def test_val_06_empty_body_on_required_endpoint(self, client):
        """VAL-06: Endpoints that need a body return INVALID_JSON without one."""
        response = await client.post("/reviews", headers=auth("tok-alice"))
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_JSON"


class TestErrorEnvelope:
    """ERR-01 to ERR-02: Routing errors use the standard envelope."""

    @pytest.mark.unit
    async def test_err_01_method_not_allowed(self, client):
        """ERR-01: Unsupported methods return 405 METHOD_NOT_ALLOWED."""
        response = await client.patch("/tasks", headers=auth("tok-alice"))
        assert response.status_code == 405
        assert response.json()["error"] == "METHOD_NOT_ALLOWED"

    @pytest.mark.unit
    async def test_err_02_unknown_route(self, client):
        """ERR-02: Unknown paths return 404 with the error envelope."""
        response = await client.get("/nowhere")
        assert response.status_code == 404
        assert set(response.json()) == {"error", "message", "details"}
