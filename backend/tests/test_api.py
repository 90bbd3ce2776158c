"""Tests for the HTTP API: pipeline triggers, webhooks and the marketing endpoints."""

import pytest

from tests.fakes import add_item


# ── Pipeline endpoints ───────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestPipelineAPI:
    async def test_run_returns_202_and_completes(self, api_client, pipeline):
        resp = await api_client.post("/api/pipeline/run", json={"type": "trend", "max_items": 10})
        assert resp.status_code == 202
        data = resp.json()
        assert data["status"] == "queued"
        assert data["triggered_by"] == "manual"

        await pipeline.drain()

        detail = await api_client.get(f"/api/pipeline/runs/{data['run_id']}")
        assert detail.status_code == 200
        body = detail.json()
        assert body["status"] == "completed"
        assert body["config"]["max_items"] == 10
        assert body["logs"][0]["message"] == "Pipeline started"

    async def test_run_without_body_defaults_to_full(self, api_client, pipeline):
        resp = await api_client.post("/api/pipeline/run")
        assert resp.status_code == 202
        assert resp.json()["type"] == "full"
        await pipeline.drain()

    async def test_conflict_returns_409_with_active_run(self, api_client, pipeline):
        active = await pipeline.start_run(background=False)

        resp = await api_client.post("/api/pipeline/run", json={})

        assert resp.status_code == 409
        assert resp.json()["run_id"] == active.run_id

    async def test_unknown_type_is_422(self, api_client):
        resp = await api_client.post("/api/pipeline/run", json={"type": "everything"})
        assert resp.status_code == 422

    async def test_status_and_history(self, api_client, pipeline):
        run = await pipeline.run_now()

        status = (await api_client.get("/api/pipeline/status")).json()
        history = (await api_client.get("/api/pipeline/history", params={"limit": 5})).json()

        assert status["is_running"] is False
        assert status["last_completed"]["run_id"] == run.run_id
        assert history["count"] == 1
        assert history["runs"][0]["run_id"] == run.run_id

    async def test_unknown_run_is_404(self, api_client):
        resp = await api_client.get("/api/pipeline/runs/does-not-exist")
        assert resp.status_code == 404

    async def test_webhook_trigger(self, api_client, pipeline):
        resp = await api_client.post("/api/webhooks/pipeline", json={"type": "enrich"})
        assert resp.status_code == 202
        assert resp.json()["triggered_by"] == "webhook"
        await pipeline.drain()


# ── Marketing endpoints ──────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestMarketingAPI:
    async def test_status(self, api_client):
        resp = await api_client.get("/api/marketing/status")
        assert resp.status_code == 200
        data = resp.json()
        assert data["queue_length"] == 0
        assert set(data["channels"]) == {"instagram", "facebook", "pinterest"}

    async def test_generate_approve_flow(self, api_client, session_factory):
        item = await add_item(session_factory, status="listed")

        generated = await api_client.post("/api/marketing/generate", json={"product_ids": [item.id]})
        assert generated.json()["generated"] == 1

        queue = (await api_client.get("/api/marketing/content-queue", params={"status": "pending_approval"})).json()
        content_id = queue["items"][0]["id"]

        approved = await api_client.post(f"/api/marketing/content/{content_id}/approve")
        assert approved.status_code == 200
        assert approved.json()["content"]["status"] == "posted"

        again = await api_client.post(f"/api/marketing/content/{content_id}/approve")
        assert again.status_code == 409
        assert again.json()["status"] == "posted"

        stats = (await api_client.get("/api/marketing/content-stats")).json()
        assert stats["posted"] == 1

    async def test_reject_and_regenerate(self, api_client, marketing, session_factory):
        item = await add_item(session_factory, status="listed")
        await marketing.generate_content_for([await marketing.load_product(item.id)])
        [content] = await marketing.get_content_queue()

        rejected = await api_client.post(f"/api/marketing/content/{content['id']}/reject", json={"reason": "Blurry"})
        assert rejected.json()["rejection_reason"] == "Blurry"

        regenerated = await api_client.post(f"/api/marketing/content/{content['id']}/regenerate")
        assert regenerated.status_code == 200
        assert regenerated.json()["regenerated_from"] == content["id"]

    async def test_unknown_content_is_404(self, api_client):
        resp = await api_client.post("/api/marketing/content/4242/approve")
        assert resp.status_code == 404

    async def test_post_now(self, api_client, session_factory):
        item = await add_item(session_factory, status="listed", image_url="https://img.example/1.jpg")

        resp = await api_client.post("/api/marketing/post-now", json={"product_id": item.id})

        assert resp.status_code == 200
        results = resp.json()["results"]
        assert results["facebook"]["success"] is True

        history = (await api_client.get("/api/marketing/social-history")).json()["history"]
        assert history[0]["product_id"] == item.id

    async def test_post_now_unknown_product_is_404(self, api_client):
        resp = await api_client.post("/api/marketing/post-now", json={"product_id": 31337})
        assert resp.status_code == 404

    async def test_invalid_content_status_filter(self, api_client):
        resp = await api_client.get("/api/marketing/content-queue", params={"status": "bogus"})
        assert resp.status_code == 422


# ── Health & metrics ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestOperational:
    async def test_metrics_endpoint(self, api_client):
        resp = await api_client.get("/metrics")
        assert resp.status_code == 200
        assert "pipeline_runs_total" in resp.text

    async def test_request_id_header_echoed(self, api_client):
        resp = await api_client.get("/api/marketing/status", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    async def test_health_reports_components(self, api_client):
        resp = await api_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["components"]["database"]["status"] == "connected"
        assert data["status"] in ("healthy", "degraded")
