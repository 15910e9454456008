from datetime import timedelta

from library_system import create_app
from library_system.config import TestConfig
from library_system.utils.clock import SystemClock, now, utcnow


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.get_json() == {"ok": True}


def test_unknown_route_is_json(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.get_json() == {"success": False, "message": "Route not found"}


def test_wrong_method_is_json(client):
    res = client.delete("/health")
    assert res.status_code == 405
    assert res.get_json()["success"] is False


def test_malformed_token(client):
    res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401
    assert res.get_json()["success"] is False


def test_injected_clock_drives_now(app, clock):
    assert now() == clock.now()
    clock.advance(days=3)
    assert now() == clock.now()


def test_default_clock_is_system_clock():
    app = create_app(TestConfig)
    assert isinstance(app.extensions["clock"], SystemClock)
    with app.app_context():
        assert abs(now() - utcnow()) < timedelta(seconds=5)
        assert now().tzinfo is None
