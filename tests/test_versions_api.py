"""
API tests for version endpoints: commit, history, get, diff and restore.
"""
import pytest

from tests.conftest import AUTHOR, WORKFLOW_ID
from tests.testkit import WorkflowFactory

API = "/api/v1"


async def _commit(async_client, workflow_id=WORKFLOW_ID, **snapshot_kwargs):
    response = await async_client.post(
        f"{API}/workflows/{workflow_id}/versions",
        json={
            "snapshot": WorkflowFactory.snapshot_payload(**snapshot_kwargs),
            "author": AUTHOR,
            "message": "update",
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestCommitVersion:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_commit_returns_version(self, async_client):
        data = await _commit(async_client)

        assert data["number"] == "1.0.0"
        assert data["workflow_id"] == WORKFLOW_ID
        assert data["author"] == AUTHOR
        assert data["origin"] == "commit"
        assert len(data["snapshot"]["nodes"]) == 2

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_structurally_invalid_snapshot_is_422(self, async_client):
        response = await async_client.post(
            f"{API}/workflows/{WORKFLOW_ID}/versions",
            json={
                "snapshot": WorkflowFactory.snapshot_payload(node_ids=["a"], edges=[("e1", "a", "ghost")]),
                "author": AUTHOR,
            },
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "validation_error"
        assert detail["details"] == ["edge 'e1' target 'ghost' does not match any node"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_missing_author_is_422(self, async_client):
        response = await async_client.post(
            f"{API}/workflows/{WORKFLOW_ID}/versions",
            json={"snapshot": WorkflowFactory.snapshot_payload()},
        )
        assert response.status_code == 422

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_commit_publishes_version_created(self, async_client, pubsub):
        subscription_id = await pubsub.subscribe(f"workflow:{WORKFLOW_ID}")
        data = await _commit(async_client)

        event = await pubsub.next_event(subscription_id, timeout=0.5)
        assert event.type == "version.created"
        assert event.payload["id"] == data["id"]


class TestHistoryAndGet:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_history_pagination(self, async_client):
        for _ in range(3):
            await _commit(async_client)

        first = (await async_client.get(f"{API}/workflows/{WORKFLOW_ID}/versions", params={"limit": 2})).json()
        assert [v["number"] for v in first["data"]] == ["1.0.2", "1.0.1"]
        assert first["next_cursor"]

        second = (await async_client.get(
            f"{API}/workflows/{WORKFLOW_ID}/versions",
            params={"limit": 2, "cursor": first["next_cursor"]},
        )).json()
        assert [v["number"] for v in second["data"]] == ["1.0.0"]
        assert second["next_cursor"] is None

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_bad_cursor_is_422(self, async_client):
        response = await async_client.get(f"{API}/workflows/{WORKFLOW_ID}/versions", params={"cursor": "nope"})
        assert response.status_code == 422

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_get_version(self, async_client):
        created = await _commit(async_client)
        response = await async_client.get(f"{API}/versions/{created['id']}")
        assert response.status_code == 200
        assert response.json() == created

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_get_unknown_version_is_404(self, async_client):
        response = await async_client.get(f"{API}/versions/missing")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"


class TestDiff:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_node_replaced(self, async_client):
        v1 = await _commit(async_client, node_ids=["a", "b"], edges=[])
        v2 = await _commit(async_client, node_ids=["a", "c"], edges=[])

        response = await async_client.get(f"{API}/versions/diff", params={"from": v1["id"], "to": v2["id"]})

        assert response.status_code == 200
        data = response.json()
        assert [(c["id"], c["kind"]) for c in data["nodes"]] == [("b", "removed"), ("c", "added")]
        assert data["edges"] == []
        assert data["config"] == []
        assert data["summary"]["total"] == 2

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_cross_workflow_diff_is_400(self, async_client):
        v1 = await _commit(async_client, workflow_id="wf-a")
        v2 = await _commit(async_client, workflow_id="wf-b")

        response = await async_client.get(f"{API}/versions/diff", params={"from": v1["id"], "to": v2["id"]})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "incompatible_versions"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_diff_unknown_version_is_404(self, async_client):
        v1 = await _commit(async_client)
        response = await async_client.get(f"{API}/versions/diff", params={"from": v1["id"], "to": "missing"})
        assert response.status_code == 404


class TestRestore:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_restore_creates_new_head(self, async_client):
        v1 = await _commit(async_client, node_ids=["a", "b"])
        await _commit(async_client, node_ids=["a", "c"], edges=[])

        response = await async_client.post(f"{API}/versions/{v1['id']}/restore", json={"author": "ops@example.com"})

        assert response.status_code == 201
        restored = response.json()
        assert restored["number"] == "1.0.2"
        assert restored["origin"] == "restore"
        assert restored["snapshot"] == v1["snapshot"]

        history = (await async_client.get(f"{API}/workflows/{WORKFLOW_ID}/versions")).json()
        assert [v["number"] for v in history["data"]] == ["1.0.2", "1.0.1", "1.0.0"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_restore_without_body(self, async_client):
        v1 = await _commit(async_client)
        response = await async_client.post(f"{API}/versions/{v1['id']}/restore")
        assert response.status_code == 201
        assert response.json()["author"] == AUTHOR

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_restore_unknown_is_404(self, async_client):
        response = await async_client.post(f"{API}/versions/missing/restore")
        assert response.status_code == 404
