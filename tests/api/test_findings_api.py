"""
Tests for the moderation API.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from nps.main import create_app
from nps.repositories.finding import FindingRepository
from nps.schemas.finding import finding_id


def _row(package_name: str, line_number: int, key: str = "aws-key") -> dict:
    return {
        "id": finding_id(package_name, "1.0.0", "grep", line_number, key),
        "found_by": "grep",
        "key": key,
        "fancy_name": "AWS Access Key",
        "tarball_name": f"{package_name}-1.0.0.tgz",
        "package_name": package_name,
        "package_version": "1.0.0",
        "file_path": "abc/package/index.js",
        "file_excerpt": "AKIA...",
        "line_number": line_number,
    }


@pytest_asyncio.fixture
async def seeded(database):
    rows = [_row("leftpad", 3), _row("leftpad", 7), _row("rightpad", 1, key="npm-token")]
    async with database.session() as session:
        await FindingRepository(session).insert_ignore(rows)
        await session.commit()
    return [row["id"] for row in rows]


@pytest_asyncio.fixture
async def client(settings, database, queue):
    app = create_app(settings, database=database, queue=queue)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


class TestHealth:
    @pytest.mark.asyncio
    async def test_heartbeat(self, client):
        response = await client.get("/heartbeat")
        assert response.status_code == 200
        assert response.text == "ok"

    @pytest.mark.asyncio
    async def test_index(self, client):
        assert (await client.get("/api/v0/")).json() == {"msg": "ok"}

    @pytest.mark.asyncio
    async def test_stats(self, client, seeded, queue, settings):
        await queue.enqueue(settings.work_queue, "/srv/a-1.0.0.tgz")

        body = (await client.get("/api/v0/stats")).json()

        assert body["success"] is True
        assert body["data"]["totalFindings"] == 3
        assert body["data"]["queues"][settings.work_queue]["waiting"] == 1


class TestListFindings:
    @pytest.mark.asyncio
    async def test_lists_all(self, client, seeded):
        data = (await client.get("/api/v0/findings")).json()["data"]
        assert data["total"] == 3
        assert data["page_size"] == 50
        assert {item["id"] for item in data["items"]} == set(seeded)
        assert "packageName" in data["items"][0]

    @pytest.mark.asyncio
    async def test_filters(self, client, seeded):
        data = (await client.get("/api/v0/findings", params={"packageName": "leftpad"})).json()["data"]
        assert data["total"] == 2

        data = (await client.get("/api/v0/findings", params={"key": "npm-token"})).json()["data"]
        assert [item["packageName"] for item in data["items"]] == ["rightpad"]

    @pytest.mark.asyncio
    async def test_pagination(self, client, seeded):
        data = (await client.get("/api/v0/findings", params={"page": 2, "page_size": 2})).json()["data"]
        assert data["pages"] == 2
        assert len(data["items"]) == 1


class TestFindingDetail:
    @pytest.mark.asyncio
    async def test_get(self, client, seeded):
        body = (await client.get(f"/api/v0/findings/{seeded[0]}")).json()
        assert body["data"]["lineNumber"] == 3

    @pytest.mark.asyncio
    async def test_unknown_id(self, client, seeded):
        response = await client.get("/api/v0/findings/does-not-exist")
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestModeration:
    @pytest.mark.asyncio
    async def test_update_touches_only_that_finding(self, client, seeded):
        response = await client.post(f"/api/v0/findings/{seeded[0]}", json={"falsePositive": True})

        assert response.status_code == 200
        assert response.json()["data"]["falsePositive"] is True
        assert response.json()["data"]["ignore"] is False
        others = [(await client.get(f"/api/v0/findings/{fid}")).json()["data"] for fid in seeded[1:]]
        assert all(not item["falsePositive"] for item in others)

    @pytest.mark.asyncio
    async def test_put_updates_both_flags(self, client, seeded):
        response = await client.put(f"/api/v0/findings/{seeded[1]}", json={"ignore": True, "falsePositive": True})
        data = response.json()["data"]
        assert (data["ignore"], data["falsePositive"]) == (True, True)

    @pytest.mark.asyncio
    async def test_ignore_set_and_clear(self, client, seeded):
        assert (await client.post(f"/api/v0/findings/{seeded[0]}/ignore")).json()["data"]["ignore"] is True
        assert (await client.delete(f"/api/v0/findings/{seeded[0]}/ignore")).json()["data"]["ignore"] is False

    @pytest.mark.asyncio
    async def test_false_positive_set_and_clear(self, client, seeded):
        url = f"/api/v0/findings/{seeded[2]}/falsePositive"
        set_body = (await client.put(url)).json()["data"]
        assert set_body["falsePositive"] is True
        assert set_body["ignore"] is False
        assert (await client.delete(url)).json()["data"]["falsePositive"] is False

    @pytest.mark.asyncio
    async def test_update_unknown_id(self, client, seeded):
        response = await client.post("/api/v0/findings/missing/ignore")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_update_without_flags_is_rejected(self, client, seeded):
        response = await client.post(f"/api/v0/findings/{seeded[0]}", json={})

        assert response.status_code == 400
        assert response.json()["success"] is False
        data = (await client.get(f"/api/v0/findings/{seeded[0]}")).json()["data"]
        assert (data["ignore"], data["falsePositive"]) == (False, False)
