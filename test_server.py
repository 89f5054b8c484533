"""Tests for the FastAPI server and its WebSocket endpoint."""

import pytest
from fastapi.testclient import TestClient

from agentrooms.orchestration.rooms import RoomCatalog, RoomDefinition
from agentrooms.utils.config import Config
from conftest import FakeCompletionService
from server import create_app


def _catalog():
    definition = RoomDefinition.from_dict({
        "name": "standup",
        "emoji": "☕",
        "agents": {
            "Facilitator": {"instructions": "Summarize.", "emoji": "🗓️"},
        },
        "strategies": {
            "selection": {"type": "sequential"},
            "termination": {"type": "keyword", "keywords": ["DONE"]},
        },
    })
    return RoomCatalog([definition], FakeCompletionService(["All good. DONE"]))


@pytest.fixture
def client():
    with TestClient(create_app(Config(), _catalog())) as test_client:
        yield test_client


def test_healthz(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_rooms_endpoint(client):
    response = client.get("/api/rooms")

    assert response.status_code == 200
    rooms = response.json()["rooms"]
    assert rooms == [{"name": "standup", "emoji": "☕", "agents": [{"name": "Facilitator", "emoji": "🗓️"}]}]


def test_websocket_rooms_command_accepts_pascal_case(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"UserId": "u1", "TransactionId": "t1", "Action": "rooms", "SubAction": "get"})
        reply = websocket.receive_json()

    assert reply["action"] == "rooms"
    assert reply["transactionId"] == "t1"
    assert reply["rooms"][0]["name"] == "standup"


def test_websocket_invalid_json_gets_error_reply(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("this is not json")
        reply = websocket.receive_json()

    assert reply["subAction"] == "error"
    assert reply["action"] == "unknown"


def test_websocket_missing_action_gets_error_reply(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"content": "hello"})
        reply = websocket.receive_json()

    assert reply["subAction"] == "error"
    assert "action" in reply["content"]


def test_websocket_chat_round_trip(client):
    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"userId": "u1", "transactionId": "t1", "action": "standup", "content": "Ship it?"})

        replies = []
        while True:
            reply = websocket.receive_json()
            replies.append(reply)
            if "terminate-decision" in reply["hints"]:
                break

    assert replies[0]["agentName"] == "Deciding..."
    assert all(r["subAction"] == "chunk" for r in replies)
    assert len({r["transactionId"] for r in replies}) == 1
    assert replies[-1]["agentName"] == "Facilitator"
    assert replies[-1]["emoji"] == "🗓️"
    assert replies[-1]["content"] == "All good. DONE"
    assert replies[-1]["hints"]["terminate-decision"]["content"].startswith("True: ")
