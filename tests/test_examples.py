"""Integration tests for the example application.

Tests the onboarding example app using Litestar's test client to verify
end-to-end functionality against a SQLite database.
"""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING

import pytest
from litestar.testing import AsyncTestClient

if TYPE_CHECKING:
    from pathlib import Path

    from litestar import Litestar

PREFIX = "/lifecycle"


@pytest.fixture
def onboarding_app(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Litestar:
    """Import the onboarding example app bound to a fresh database file."""
    monkeypatch.setenv("LIFECYCLE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'onboarding.db'}")
    module = importlib.reload(importlib.import_module("examples.onboarding.app"))
    return module.app


async def register(client: AsyncTestClient) -> dict:
    response = await client.post(
        "/processes",
        json={"employee_id": 42, "employee_name": "Ada Lovelace", "manager_id": 7, "department": "IT"},
    )
    assert response.status_code == 201
    return response.json()


async def finish_equipment(client: AsyncTestClient, process_id: int) -> None:
    laptop, accounts = (await client.get(f"{PREFIX}/tasks/", params={"process_id": process_id})).json()
    assert laptop["title"] == "Order laptop for Ada Lovelace"
    assert accounts["is_blocked"] is True

    await client.post(f"{PREFIX}/tasks/{laptop['id']}/complete")
    await client.post(f"{PREFIX}/tasks/{accounts['id']}/complete")


async def pending_signoff(client: AsyncTestClient) -> dict:
    [request] = (await client.get(f"{PREFIX}/approvals/pending", params={"approver_id": 7})).json()
    return request


@pytest.mark.integration
@pytest.mark.asyncio
class TestOnboardingApp:
    """Integration tests for the onboarding example app."""

    async def test_health_check(self, onboarding_app: Litestar) -> None:
        async with AsyncTestClient(app=onboarding_app) as client:
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    async def test_definition_is_registered(self, onboarding_app: Litestar) -> None:
        async with AsyncTestClient(app=onboarding_app) as client:
            response = await client.get(f"{PREFIX}/workflows/definitions")

        [definition] = response.json()
        assert definition["id"] == "onboarding"
        assert definition["steps"] == ["equipment", "manager_signoff", "welcome", "record_rejection"]

    async def test_approved_onboarding(self, onboarding_app: Litestar) -> None:
        async with AsyncTestClient(app=onboarding_app) as client:
            started = await register(client)
            assert started["status"] == "waiting_for_task"

            await finish_equipment(client, started["process_id"])
            request = await pending_signoff(client)
            await client.post(
                f"{PREFIX}/approvals/requests/{request['id']}/decision",
                json={"decision": "approve", "decided_by": 7},
            )

            detail = (await client.get(f"{PREFIX}/workflows/instances/{started['instance_id']}")).json()

        assert detail["status"] == "completed"
        assert [step["step_id"] for step in detail["steps"]] == ["equipment", "manager_signoff", "welcome"]

    async def test_rejection_requires_comments(self, onboarding_app: Litestar) -> None:
        async with AsyncTestClient(app=onboarding_app) as client:
            started = await register(client)
            await finish_equipment(client, started["process_id"])
            request = await pending_signoff(client)
            url = f"{PREFIX}/approvals/requests/{request['id']}/decision"

            missing_comments = await client.post(url, json={"decision": "reject"})
            rejected = await client.post(url, json={"decision": "reject", "comments": "Start date moved"})

            detail = (await client.get(f"{PREFIX}/workflows/instances/{started['instance_id']}")).json()

        assert missing_comments.status_code == 400
        assert rejected.json()["status"] == "rejected"
        assert detail["status"] == "completed"
        assert detail["steps"][-1]["step_id"] == "record_rejection"
