"""
Tests for the voice HTTP API.

Verifies:
- POST /voice/commands runs the pipeline
- history, context, statistics and events reads
- preference updates with field errors on 422
"""
import pytest
from fastapi.testclient import TestClient

from control_api.app import create_app
from observability.event_store import event_store
from voice_commerce.config import VoiceCommerceConfig
from voice_commerce.pipeline import build_pipeline


@pytest.fixture
def pipeline(tmp_path):
    event_store.clear()
    return build_pipeline(VoiceCommerceConfig(device_id="api-kiosk"), session_id="api-test", preferences_dir=str(tmp_path))


@pytest.fixture
def client(pipeline):
    with TestClient(create_app(pipeline)) as client:
        yield client
    event_store.clear()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["component"] == "control_api"
    assert body["events_capacity"] == 10000


def test_process_command(client):
    """A recognized order is executed and returned with its answer."""
    response = client.post("/voice/commands", json={"text": "Füeg zwöi Pommes dezue", "confidence": 0.95})
    assert response.status_code == 200
    data = response.json()
    assert data["intent"] == "add_to_cart"
    assert data["entities"] == {"quantity": 2, "item": "pommes"}
    assert data["normalized_text"] == "füge zwei pommes dazu"
    assert data["execution"]["success"] is True
    assert data["execution"]["message"] == "2x pommes isch i Warechorb"
    assert data["id"].startswith("cmd_")


def test_low_confidence_returns_suggestions(client):
    data = client.post("/voice/commands", json={"text": "ich möchte einen burger", "confidence": 0.3}).json()
    assert data["intent"] is None
    assert data["execution"] is None
    assert 0 < len(data["suggestions"]) <= 3


def test_command_request_validation(client):
    assert client.post("/voice/commands", json={"text": ""}).status_code == 422
    assert client.post("/voice/commands", json={"text": "hilfe", "confidence": 1.5}).status_code == 422


def test_history_newest_first(client):
    for text in ("hilfe", "zur kasse"):
        client.post("/voice/commands", json={"text": text})
    history = client.get("/voice/history").json()
    assert [c["intent"] for c in history] == ["checkout", "show_help"]
    assert len(client.get("/voice/history?limit=1").json()) == 1
    assert client.get("/voice/history?limit=51").status_code == 422


def test_context_read_and_clear(client):
    assert client.get("/voice/context").json() == {"context": None}

    client.post("/voice/commands", json={"text": "neue Bestellung für Tisch 4"})
    context = client.get("/voice/context").json()["context"]
    assert context["type"] == "order_creation"
    assert context["payload"] == {"table": 4, "items": []}

    assert client.delete("/voice/context").json() == {"cleared": "order_creation"}
    assert client.delete("/voice/context").json() == {"cleared": None}


def test_preferences_update(client):
    response = client.patch("/voice/preferences", json={"speaker": {"rate": 1.2}, "privacy": {"save_history": False}})
    assert response.status_code == 200
    prefs = response.json()["preferences"]
    assert prefs["speaker"]["rate"] == 1.2
    assert prefs["privacy"]["saveHistory"] is False


def test_invalid_preferences_rejected(client):
    """An out-of-range threshold is refused and nothing changes."""
    response = client.patch("/voice/preferences", json={"recognition": {"confidenceThreshold": 1.5}})
    assert response.status_code == 422
    errors = response.json()["detail"]["errors"]
    assert errors[0]["location"] == "recognition.confidenceThreshold"

    prefs = client.get("/voice/preferences").json()
    assert prefs["preferences"]["recognition"]["confidenceThreshold"] == 0.7
    assert prefs["schemaVersion"] == "4.1.0"
    assert prefs["deviceId"] == "api-kiosk"


def test_preferences_import(client):
    """An old exported record is migrated on import; an invalid one changes nothing."""
    legacy = {"schemaVersion": "1.2.0", "preferences": {"voiceSettings": {"volume": 0.4, "enabled": False}}}
    response = client.post("/voice/preferences/import", json=legacy)
    assert response.status_code == 200
    body = response.json()
    assert body["schemaVersion"] == "4.1.0"
    assert body["preferences"]["speaker"]["volume"] == 0.4
    assert body["preferences"]["feedback"]["enabled"] is False

    rejected = client.post("/voice/preferences/import", json={"preferences": {"speaker": {"volume": 2}}})
    assert rejected.status_code == 422
    assert rejected.json()["detail"]["errors"][0]["location"] == "speaker.volume"
    assert client.get("/voice/preferences").json()["preferences"]["speaker"]["volume"] == 0.4

    assert client.post("/voice/preferences/import", json={"wakeWord": "sali eatech"}).json()["preferences"]["wakeWord"] == "sali eatech"


def test_flush_and_reset(client, tmp_path):
    client.patch("/voice/preferences", json={"wakeWord": "hoi eatech"})
    assert client.post("/voice/preferences/flush").json() == {"written": True}
    assert (tmp_path / "api-kiosk.json").exists()
    assert client.post("/voice/preferences/flush").json() == {"written": False}

    client.post("/voice/commands", json={"text": "hilfe"})
    reset = client.post("/voice/preferences/reset?keep_statistics=true").json()
    assert reset["preferences"]["wakeWord"] == "hey eatech"
    assert reset["preferences"]["stats"]["totalCommands"] == 1


def test_statistics(client):
    client.post("/voice/commands", json={"text": "zur kasse"})
    client.post("/voice/commands", json={"text": "blau grün gelb"})
    stats = client.get("/voice/statistics").json()
    assert stats["totalCommands"] == 2
    assert stats["successfulCommands"] == 1
    assert stats["favoriteCommands"] == [{"intent": "checkout", "count": 1}]


def test_events_scoped_to_pipeline_session(client):
    client.post("/voice/commands", json={"text": "zur kasse"})
    data = client.get("/voice/events?event_type=command.").json()
    assert data["session_id"] == "api-test"
    assert [e["event_type"] for e in data["events"]] == ["command.resolved", "command.executed"]
    assert data["count"] == 2


def test_events_bad_timestamp(client):
    assert client.get("/voice/events?since=yesterday").status_code == 400


def test_events_for_one_command(client):
    """Every event of a command carries the command id as correlation id."""
    first = client.post("/voice/commands", json={"text": "zur kasse"}).json()
    client.post("/voice/commands", json={"text": "hilfe"})

    data = client.get(f"/voice/events?correlation_id={first['id']}").json()
    types = [e["event_type"] for e in data["events"]]
    assert "command.resolved" in types
    assert "command.executed" in types
    assert all(e["correlation_id"] == first["id"] for e in data["events"])
