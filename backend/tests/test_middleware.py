import pytest
from httpx import AsyncClient

from codeprism.core import rate_limit
from codeprism.core.rate_limit import _SlidingWindow, match_rule


@pytest.mark.asyncio
async def test_request_id_in_response(client: AsyncClient):
    """All responses include X-Request-ID header."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    # UUID format: 8-4-4-4-12
    assert len(response.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_404_returns_structured_json(client: AsyncClient):
    """Non-existent endpoint returns the standard error envelope."""
    response = await client.get("/nonexistent")
    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["error"]
    assert data["request_id"] == response.headers["X-Request-ID"]


def test_rate_limit_rules():
    assert match_rule("POST", "/vault/share") == ("/vault/share", 10, 60)
    assert match_rule("GET", "/vault/share") == ("/vault/share", 60, 60)
    assert match_rule("DELETE", "/approver/sessions/direct/x") == ("/approver/", 30, 60)
    assert match_rule("GET", "/vault") is None
    assert match_rule("GET", "/health") is None


def test_sliding_window_blocks_after_limit():
    window = _SlidingWindow()
    assert all(window.is_allowed("ip:1", 3, 60) for _ in range(3))
    assert window.is_allowed("ip:1", 3, 60) is False
    # Other clients are counted separately
    assert window.is_allowed("ip:2", 3, 60) is True


def test_sliding_window_forgets_idle_clients(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(rate_limit.time, "monotonic", lambda: clock[0])
    window = _SlidingWindow(sweep_interval=30)

    for n in range(50):
        assert window.is_allowed(f"ip:{n}", 10, 60)
    assert len(window._hits) == 50

    clock[0] += 61
    assert window.is_allowed("ip:new", 10, 60)
    assert set(window._hits) == {"ip:new"}


def test_sliding_window_rejection_stores_nothing_new():
    window = _SlidingWindow()
    assert window.is_allowed("ip:1", 0, 60) is False
    assert "ip:1" not in window._hits
