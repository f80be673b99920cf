from __future__ import annotations

import json

import pytest
from conftest import create_chatbox, register_and_login

from algoqube.core.db_models import DBChatbox, DBConversation, DBUser
from algoqube.services.conversation_service import calculate_tokens


@pytest.mark.parametrize(
    "text,expected",
    [("", 0), ("hi", 1), ("abcd", 1), ("abcde", 2), ("x" * 16, 4), ("x" * 400, 5)],
)
def test_calculate_tokens_is_clamped(text, expected):
    assert calculate_tokens(text) == expected


def _owner_and_chatbox(client):
    headers = register_and_login(client, "owner@example.com")
    return headers, create_chatbox(client, headers)


def test_visit_and_initiate_counters(client, db_session):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]

    assert client.post(f"/api/analytics/visit/{name}").json() == {"visits": 1}
    assert client.post(f"/api/analytics/visit/{name}").json() == {"visits": 2}

    initiated = client.post(
        f"/api/analytics/initiate/{name}",
        headers={"User-Agent": "pytest-agent", "Referer": "https://shop.example.com/pricing"},
    )
    assert initiated.status_code == 200
    assert initiated.json()["conversationsInitiated"] == 1
    conversation_id = initiated.json()["conversationId"]
    assert conversation_id.startswith("conv_")

    stored = db_session.query(DBConversation).filter(DBConversation.conversation_id == conversation_id).one()
    assert stored.chatbox_name == name
    assert stored.status == "active"
    assert stored.user_agent == "pytest-agent"
    assert stored.website == "https://shop.example.com/pricing"

    summary = client.get(f"/api/analytics/{name}").json()["analytics"]
    assert summary["websiteVisits"] == 2
    assert summary["conversationsInitiated"] == 1
    # Only completed conversations count towards the total
    assert summary["totalConversations"] == 0
    assert summary["lastUpdated"]


def test_messages_charge_tokens_to_conversation_chatbox_and_owner(client, db_session):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]
    conversation_id = client.post(f"/api/analytics/initiate/{name}").json()["conversationId"]

    first = client.post(
        f"/api/analytics/message/{name}",
        json={"conversationId": conversation_id, "role": "user", "content": "Hello there!"},
    )
    assert first.status_code == 200
    assert first.json() == {
        "message": "Message saved",
        "messageCount": 1,
        "tokensUsed": 3,
        "tokensForMessage": 3,
    }

    second = client.post(
        f"/api/analytics/message/{name}",
        json={"conversationId": conversation_id, "role": "bot", "content": "x" * 100},
    )
    assert second.json()["tokensForMessage"] == 5
    assert second.json()["tokensUsed"] == 8
    assert second.json()["messageCount"] == 2

    summary = client.get(f"/api/analytics/{name}").json()["analytics"]
    assert summary["totalTokenUsed"] == 8

    owner = db_session.query(DBUser).filter(DBUser.email == "owner@example.com").one()
    db_session.refresh(owner)
    assert owner.tokens_used == 8
    assert owner.tokens_remaining == 992

    conversation = db_session.query(DBConversation).filter(DBConversation.conversation_id == conversation_id).one()
    db_session.refresh(conversation)
    assert [message["role"] for message in conversation.messages_json] == ["user", "bot"]
    assert conversation.messages_json[0]["tokensUsed"] == 3


def test_message_is_recorded_but_not_deducted_when_owner_is_out_of_tokens(client, db_session):
    headers, chatbox = _owner_and_chatbox(client)
    client.post("/api/users/use-tokens", headers=headers, json={"tokens": 999})
    name = chatbox["name"]
    conversation_id = client.post(f"/api/analytics/initiate/{name}").json()["conversationId"]

    response = client.post(
        f"/api/analytics/message/{name}",
        json={"conversationId": conversation_id, "role": "user", "content": "x" * 20},
    )
    assert response.status_code == 200
    assert response.json()["tokensForMessage"] == 5

    owner = db_session.query(DBUser).filter(DBUser.email == "owner@example.com").one()
    db_session.refresh(owner)
    assert owner.tokens_remaining == 1
    assert owner.tokens_used == 999
    chatbox_row = db_session.query(DBChatbox).filter(DBChatbox.name == name).one()
    db_session.refresh(chatbox_row)
    assert chatbox_row.total_token_used == 5


def test_unlimited_plan_accumulates_usage_only(client, db_session):
    headers, chatbox = _owner_and_chatbox(client)
    client.post("/api/users/select-plan", headers=headers, json={"planId": "enterprise"})
    name = chatbox["name"]
    conversation_id = client.post(f"/api/analytics/initiate/{name}").json()["conversationId"]

    client.post(
        f"/api/analytics/message/{name}",
        json={"conversationId": conversation_id, "role": "user", "content": "abcd"},
    )
    owner = db_session.query(DBUser).filter(DBUser.email == "owner@example.com").one()
    db_session.refresh(owner)
    assert owner.tokens_used == 1
    assert owner.tokens_remaining == 0


def test_message_validation(client):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]

    missing = client.post(f"/api/analytics/message/{name}", json={"role": "user", "content": "hi"})
    assert missing.status_code == 400

    unknown = client.post(
        f"/api/analytics/message/{name}",
        json={"conversationId": "conv_missing", "role": "user", "content": "hi"},
    )
    assert unknown.status_code == 404
    assert unknown.json()["detail"] == "Conversation not found"

    other_chatbox = client.post(
        "/api/analytics/message/missing",
        json={"conversationId": "conv_missing", "role": "user", "content": "hi"},
    )
    assert other_chatbox.status_code == 404
    assert other_chatbox.json()["detail"] == "Chatbox not found"


def test_complete_conversation_updates_rolling_average(client, db_session):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]
    first_id = client.post(f"/api/analytics/initiate/{name}").json()["conversationId"]
    second_id = client.post(f"/api/analytics/initiate/{name}").json()["conversationId"]

    first = client.post(f"/api/analytics/complete/{name}", json={"conversationId": first_id, "duration": 30})
    assert first.status_code == 200
    assert first.json() == {"totalConversations": 1, "avgConversationTime": 30}

    # sendBeacon posts JSON as text/plain
    second = client.post(
        f"/api/analytics/complete/{name}",
        content=json.dumps({"conversationId": second_id, "duration": 90}),
        headers={"Content-Type": "text/plain"},
    )
    assert second.json() == {"totalConversations": 2, "avgConversationTime": 60}

    repeated = client.post(f"/api/analytics/complete/{name}", json={"conversationId": second_id, "duration": 90})
    assert repeated.json()["totalConversations"] == 2

    stored = db_session.query(DBConversation).filter(DBConversation.conversation_id == first_id).one()
    db_session.refresh(stored)
    assert stored.status == "completed"
    assert stored.duration == 30


@pytest.mark.parametrize(
    "body",
    [{"duration": 10}, {"conversationId": "conv_x", "duration": 0}, {"conversationId": "conv_x", "duration": "10"}],
)
def test_complete_rejects_invalid_payload(client, body):
    _, chatbox = _owner_and_chatbox(client)
    response = client.post(f"/api/analytics/complete/{chatbox['name']}", json=body)
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid conversationId or duration"


def test_session_duration_average_over_visits(client):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]

    # No visits yet: the session counts as the only one
    assert client.post(f"/api/analytics/session/{name}", json={"duration": 40}).json() == {"avgSessionTime": 40}

    client.post(f"/api/analytics/visit/{name}")
    client.post(f"/api/analytics/visit/{name}")
    response = client.post(f"/api/analytics/session/{name}", json={"duration": 20})
    assert response.json() == {"avgSessionTime": 30}

    assert client.get(f"/api/analytics/{name}").json()["analytics"]["avgSessionTime"] == 30


def test_session_rejects_bad_bodies(client):
    _, chatbox = _owner_and_chatbox(client)
    name = chatbox["name"]

    not_json = client.post(
        f"/api/analytics/session/{name}",
        content="duration=5",
        headers={"Content-Type": "text/plain"},
    )
    assert not_json.status_code == 400
    assert not_json.json()["detail"] == "Invalid request body"

    negative = client.post(f"/api/analytics/session/{name}", json={"duration": -5})
    assert negative.status_code == 400
    assert negative.json()["detail"] == "Invalid duration"


def test_unknown_chatbox_returns_404(client):
    assert client.post("/api/analytics/visit/missing").status_code == 404
    assert client.get("/api/analytics/missing").status_code == 404
    assert client.post("/api/analytics/initiate/missing").status_code == 404
