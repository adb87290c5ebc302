"""HTTP surface tests through the Flask test client.

The app is built by create_app with a file-backed database and the fake
device gateway / weather provider from conftest.
"""

import logging

from app.domain.exceptions import WeatherUnavailableError

# ==================== Cron triggers ====================


def test_cron_requires_secret(client):
    response = client.get("/api/v1/cron/auto-water")
    assert response.status_code == 401
    body = response.get_json()
    assert body["ok"] is False
    assert body["details"]["code"] == "UNAUTHORIZED"


def test_cron_rejects_wrong_secret(client, device_client):
    response = client.post("/api/v1/cron/water-check", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert device_client.commands == []


def test_cron_auto_water_starts_session(client, cron_headers, device_client):
    response = client.post("/api/v1/cron/auto-water", headers=cron_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["success"] is True
    assert body["action"] == "started"
    assert body["zone_id"] == "garden"
    assert body["session"]["trigger"] == "automated"
    assert body["logs"]
    assert device_client.commands == [("tap-1", "switch", True)]


def test_cron_auto_water_accepts_get(client, cron_headers):
    response = client.get("/api/v1/cron/auto-water?zone=garden", headers=cron_headers)
    assert response.status_code == 200


def test_cron_auto_water_unknown_zone(client, cron_headers):
    response = client.get("/api/v1/cron/auto-water?zone=nowhere", headers=cron_headers)
    assert response.status_code == 404


def test_cron_failure_returns_500(client, cron_headers, device_client, caplog):
    device_client.devices["sensor-1"].status = {}

    with caplog.at_level(logging.WARNING, logger="cron_api"):
        response = client.get("/api/v1/cron/auto-water", headers=cron_headers)

    assert response.status_code == 500
    body = response.get_json()
    assert body["success"] is False
    assert body["reason"] == "Sensor read failed"
    assert "Scheduler run failed" in caplog.text


def test_cron_water_check_stops_due_session(client, cron_headers, device_client, clock):
    client.post("/api/v1/cron/auto-water", headers=cron_headers)
    clock.advance(minutes=35)

    response = client.post("/api/v1/cron/water-check", headers=cron_headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["action"] == "stopped"
    assert body["details"][0]["duration_seconds"] == 35 * 60
    assert device_client.commands[-1] == ("tap-1", "switch", False)


def test_legacy_cron_path_is_rewritten(client, cron_headers):
    response = client.get("/api/cron/water-check", headers=cron_headers)
    assert response.status_code == 200
    assert response.get_json()["action"] == "none"


# ==================== Zones & manual control ====================


def test_list_zones(client):
    response = client.get("/api/v1/zones")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["count"] == 1
    zone = data["zones"][0]
    assert zone["zone_id"] == "garden"
    assert zone["state"] == "idle"
    assert zone["active_session"] is None
    assert zone["last_reading"] is None


def test_manual_start_and_stop(client, device_client, clock):
    started = client.post("/api/v1/zones/garden/watering", json={"action": "start"})
    assert started.status_code == 201
    session = started.get_json()["data"]["session"]
    assert session["trigger"] == "manual"
    assert session["scheduled_end_at"] is None

    again = client.post("/api/v1/zones/garden/watering", json={"action": "start"})
    assert again.status_code == 200
    assert again.get_json()["data"]["outcome"] == "already_active"

    zones = client.get("/api/v1/zones").get_json()["data"]["zones"]
    assert zones[0]["state"] == "active"

    clock.advance(minutes=12)
    stopped = client.post("/api/v1/zones/garden/watering", json={"action": "stop"})
    assert stopped.status_code == 200
    data = stopped.get_json()["data"]
    assert data["outcome"] == "stopped"
    assert data["session"]["duration_seconds"] == 720
    assert [c[2] for c in device_client.commands] == [True, False]


def test_manual_start_with_duration_is_scheduled(client, clock):
    response = client.post("/api/v1/zones/garden/watering", json={"action": "start", "duration_minutes": 20})
    session = response.get_json()["data"]["session"]
    assert session["trigger"] == "scheduled"
    assert session["scheduled_end_at"] is not None


def test_stop_when_idle(client):
    response = client.post("/api/v1/zones/garden/watering", json={"action": "stop"})
    assert response.status_code == 200
    assert response.get_json()["data"]["outcome"] == "idle"


def test_invalid_control_request(client):
    response = client.post("/api/v1/zones/garden/watering", json={"action": "flood"})
    assert response.status_code == 400
    assert response.get_json()["details"]["errors"]


def test_control_unknown_zone(client):
    response = client.post("/api/v1/zones/nowhere/watering", json={"action": "start"})
    assert response.status_code == 404
    error = response.get_json()["error"]
    assert error["kind"] == "NotFoundError"
    assert "code" not in error


def test_manual_start_device_failure_is_503(client, device_client):
    from app.domain.exceptions import DeviceTransportError

    device_client.command_errors["tap-1"] = DeviceTransportError("no ack")
    response = client.post("/api/v1/zones/garden/watering", json={"action": "start"})

    assert response.status_code == 503
    assert response.get_json()["error"]["message"] == "Device gateway unavailable"
    assert response.get_json()["error"]["kind"] == "DeviceTransportError"


# ==================== History / weather / sensor ====================


def test_history_after_session(client, clock):
    client.post("/api/v1/zones/garden/watering", json={"action": "start"})
    clock.advance(minutes=5)
    client.post("/api/v1/zones/garden/watering", json={"action": "stop"})

    response = client.get("/api/v1/history?limit=5")

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert len(data["sessions"]) == 1
    assert data["sessions"][0]["duration_seconds"] == 300
    assert data["stats"]["total_events"] == 1


def test_weather(client):
    response = client.get("/api/v1/weather")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["weather"]["recent_rainfall"]["last_7days"] == 0.5
    assert data["watering_recommendation"]["should_water"] is True


def test_weather_unavailable(client, weather_service):
    weather_service.error = WeatherUnavailableError("provider down")
    response = client.get("/api/v1/weather")
    assert response.status_code == 502
    assert response.get_json()["error"]["message"] == "Upstream service unavailable"


def test_soil_sensor(client):
    response = client.get("/api/v1/soil-sensor")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["zone_id"] == "garden"
    assert data["moisture"] == 30.0
    assert data["temperature"] == 18.5


def test_soil_sensor_unknown_zone(client):
    assert client.get("/api/v1/soil-sensor?zone=nowhere").status_code == 404


def test_device_status(client):
    response = client.get("/api/v1/devices/tap-1")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["online"] is True
    assert data["is_on"] is False


def test_device_status_gateway_error(client):
    response = client.get("/api/v1/devices/missing")
    assert response.status_code == 503
    error = response.get_json()["error"]
    assert error["message"] == "Device gateway unavailable"
    assert error["kind"] == "DeviceApiError"
    assert error["code"] == 2001


# ==================== Health ====================


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["status"] == "ok"
    assert data["ready"] is True
    assert data["checks"]["database"] is True
    assert data["zones"] == ["garden"]
    assert data["decision_strategies"] == ["deterministic"]
    assert data["advisor"] == "none"


def test_ping(client):
    response = client.get("/api/v1/health/ping")
    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "ok"


def test_unknown_api_route_returns_json(client):
    response = client.get("/api/v1/nothing-here")
    assert response.status_code == 404
    assert response.get_json()["ok"] is False
