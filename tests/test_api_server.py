"""HTTP surface: dispatch status mapping, stats, module overview, job inspection."""
import httpx
import pytest

from api_server import create_app


@pytest.fixture
async def client(container, order_modules):
    app = create_app(container_factory=lambda: container)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


async def test_dispatch_queues_job(client, channels):
    await channels.create(module_key="order_completed", endpoint_token="1:a", target_chat_id="1")

    response = await client.post(
        "/api/notifications/dispatch",
        json={"module": "order_completed", "message": "Order #123 completed", "priority": 5},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["queued"] is True
    assert body["total_channels"] == 1

    job = await client.get(f"/api/notifications/jobs/{body['jobId']}")
    assert job.status_code == 200
    assert job.json()["data"]["priority"] == 5
    assert job.json()["data"]["state"] == "waiting"


@pytest.mark.parametrize(
    "payload, status, error",
    [
        ({"module": "", "message": "x"}, 400, "InvalidRequest"),
        ({"message": "x"}, 400, "InvalidRequest"),
        ({"module": "unknown_module", "message": "x"}, 409, "NoActiveChannel"),
        ({"module": "order_completed", "message": "x"}, 409, "NoActiveChannel"),
    ],
)
async def test_dispatch_rejections(client, payload, status, error):
    response = await client.post("/api/notifications/dispatch", json=payload)

    assert response.status_code == status
    assert response.json()["success"] is False
    assert response.json()["error"] == error


async def test_dispatch_store_failure_is_503(client, channels, container, monkeypatch):
    from notifier.errors import QueuePersistError

    await channels.create(module_key="order_completed", endpoint_token="1:a", target_chat_id="1")

    async def broken_enqueue(**kwargs):
        raise QueuePersistError("down")

    monkeypatch.setattr(container.queue_service, "enqueue", broken_enqueue)

    response = await client.post("/api/notifications/dispatch", json={"module": "order_completed", "message": "x"})

    assert response.status_code == 503
    assert response.json()["error"] == "QueuePersistFailure"


async def test_malformed_body_is_422(client):
    response = await client.post("/api/notifications/dispatch", json={"module": "m", "message": "x", "priority": "hi"})

    assert response.status_code == 422


async def test_stats(client, channels):
    await channels.create(module_key="order_completed", endpoint_token="1:a", target_chat_id="1")
    await client.post("/api/notifications/dispatch", json={"module": "order_completed", "message": "x"})
    await client.post("/api/notifications/dispatch", json={"module": "order_completed", "message": "y", "delay": 60000})

    response = await client.get("/api/notifications/stats")

    assert response.status_code == 200
    assert response.json() == {"waiting": 1, "active": 0, "completed": 0, "failed": 0, "delayed": 1, "total": 2}


async def test_modules_overview(client, channels):
    await channels.create(module_key="order_details", endpoint_token="1:a", target_chat_id="1")

    response = await client.get("/api/notifications/modules")

    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["data"][0]["module_key"] == "order"
    assert body["data"][0]["active_channels_count"] == 1


async def test_unknown_job_is_404(client):
    response = await client.get("/api/notifications/jobs/424242")

    assert response.status_code == 404


async def test_health(client):
    response = await client.get("/health")

    assert response.json() == {"status": "ok"}
