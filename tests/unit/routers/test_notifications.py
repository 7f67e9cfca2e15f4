"""Notification inbox and device token tests for the Task Market service."""

from __future__ import annotations

import pytest

from tests.helpers import auth
from tests.unit.routers.conftest import create_task, place_bid


async def seed_new_bids(client, count: int) -> list[str]:
    """Give Alice `count` new_bid notifications. Returns the bid IDs, oldest first."""
    tokens = ["tok-bob", "tok-dave"]
    bid_ids = []
    for index in range(count):
        task_id = (await create_task(client)).json()["task_id"]
        bid_ids.append((await place_bid(client, task_id, tokens[index % 2])).json()["bid_id"])
    return bid_ids


class TestInbox:
    """Category 1: Listing and reading notifications: NI-01 to NI-06."""

    @pytest.mark.unit
    async def test_ni_01_empty_inbox(self, client):
        """NI-01: A new user has an empty inbox."""
        body = (await client.get("/notifications", headers=auth("tok-alice"))).json()
        assert body == {"notifications": [], "page": 1, "pages": 0, "count": 0, "unread_count": 0}

    @pytest.mark.unit
    async def test_ni_02_newest_first_and_paginated(self, client):
        """NI-02: Notifications are newest first, 20 per page."""
        bid_ids = await seed_new_bids(client, 22)

        first = (await client.get("/notifications", headers=auth("tok-alice"))).json()
        assert first["count"] == 22
        assert first["pages"] == 2
        assert first["unread_count"] == 22
        assert len(first["notifications"]) == 20
        assert first["notifications"][0]["bid_id"] == bid_ids[-1]

        second = (await client.get("/notifications", params={"page": "2"}, headers=auth("tok-alice"))).json()
        assert [n["bid_id"] for n in second["notifications"]] == [bid_ids[1], bid_ids[0]]

    @pytest.mark.unit
    async def test_ni_03_mark_one_read(self, client):
        """NI-03: Marking one notification read lowers the unread count."""
        await seed_new_bids(client, 2)
        inbox = (await client.get("/notifications", headers=auth("tok-alice"))).json()
        notification_id = inbox["notifications"][0]["notification_id"]

        response = await client.put(f"/notifications/{notification_id}/read", headers=auth("tok-alice"))
        assert response.status_code == 200
        assert response.json()["is_read"] is True

        inbox = (await client.get("/notifications", headers=auth("tok-alice"))).json()
        assert inbox["unread_count"] == 1

    @pytest.mark.unit
    async def test_ni_04_mark_all_read(self, client):
        """NI-04: read-all marks every notification of the caller."""
        await seed_new_bids(client, 3)
        response = await client.put("/notifications/read-all", headers=auth("tok-alice"))
        assert response.status_code == 200
        assert response.json()["updated"] == 3

        inbox = (await client.get("/notifications", headers=auth("tok-alice"))).json()
        assert inbox["unread_count"] == 0
        assert all(n["is_read"] for n in inbox["notifications"])

    @pytest.mark.unit
    async def test_ni_05_other_users_notifications(self, client):
        """NI-05: Users cannot read or delete someone else's notifications."""
        await seed_new_bids(client, 1)
        notification_id = (await client.get("/notifications", headers=auth("tok-alice"))).json()[
            "notifications"
        ][0]["notification_id"]

        read = await client.put(f"/notifications/{notification_id}/read", headers=auth("tok-carol"))
        assert read.status_code == 403
        delete = await client.delete(f"/notifications/{notification_id}", headers=auth("tok-carol"))
        assert delete.status_code == 403

    @pytest.mark.unit
    async def test_ni_06_delete_notification(self, client):
        """NI-06: Deleting removes the notification; unknown IDs return 404."""
        await seed_new_bids(client, 1)
        notification_id = (await client.get("/notifications", headers=auth("tok-alice"))).json()[
            "notifications"
        ][0]["notification_id"]

        response = await client.delete(f"/notifications/{notification_id}", headers=auth("tok-alice"))
        assert response.status_code == 200
        assert (await client.get("/notifications", headers=auth("tok-alice"))).json()["count"] == 0

        missing = await client.delete(f"/notifications/{notification_id}", headers=auth("tok-alice"))
        assert missing.status_code == 404
        assert missing.json()["error"] == "NOTIFICATION_NOT_FOUND"

    @pytest.mark.unit
    @pytest.mark.parametrize("page", ["0", "-1", "two"])
    async def test_ni_07_bad_page(self, client, page):
        """NI-07: page must be a positive integer."""
        response = await client.get("/notifications", params={"page": page}, headers=auth("tok-alice"))
        assert response.status_code == 400


class TestDeviceTokens:
    """Category 2: Push device registration: DT-01 to DT-03."""

    @pytest.mark.unit
    async def test_dt_01_register_device(self, client):
        """DT-01: Registering a device token returns 201."""
        response = await client.post(
            "/notifications/devices",
            json={"device_token": "phone-1"},
            headers=auth("tok-bob"),
        )
        assert response.status_code == 201
        assert response.json()["device_token"] == "phone-1"

    @pytest.mark.unit
    async def test_dt_02_register_is_idempotent(self, client):
        """DT-02: Registering the same token twice keeps one registration."""
        for _ in range(2):
            await client.post("/notifications/devices", json={"device_token": "phone-1"}, headers=auth("tok-bob"))

        assert (await client.delete("/notifications/devices/phone-1", headers=auth("tok-bob"))).status_code == 200
        assert (await client.delete("/notifications/devices/phone-1", headers=auth("tok-bob"))).status_code == 404

    @pytest.mark.unit
    @pytest.mark.parametrize("body", [{}, {"device_token": ""}, {"device_token": 42}])
    async def test_dt_03_invalid_token(self, client, body):
        """DT-03: device_token must be a non-empty string."""
        response = await client.post("/notifications/devices", json=body, headers=auth("tok-bob"))
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "device_token"
