from __future__ import annotations

from school_api.utils import messages


def _send(client, text, user_id="42"):
    response = client.post("/api/messages", json={"text": text, "userId": user_id})
    assert response.status_code == 201
    return response.json()["data"]


def test_empty_thread_gets_welcome_message(client):
    thread = client.get("/api/messages/user/42").json()["messages"]

    assert len(thread) == 1
    assert thread[0]["id"] == 0
    assert thread[0]["isAdmin"] is True
    assert thread[0]["text"] == messages.WELCOME_TEXT


def test_numeric_user_ids_are_accepted(client):
    response = client.post("/api/messages", json={"text": "Salom", "userId": 42})

    assert response.status_code == 201
    assert response.json()["data"]["userId"] == "42"


def test_reply_flags_original_and_joins_thread(client):
    original = _send(client, "When does the course start?")

    response = client.post(
        "/api/messages/reply",
        json={"text": "Next Monday", "userId": "42", "messageId": original["id"]},
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["original"]["hasReply"] is True
    assert data["original"]["reply"]["text"] == "Next Monday"
    assert data["reply"]["isAdmin"] is True
    assert data["reply"]["replyToMessageId"] == original["id"]

    thread = client.get("/api/messages/user/42").json()["messages"]
    assert [item["text"] for item in thread] == ["When does the course start?", "Next Monday"]


def test_only_newest_reply_is_attached(client):
    original = _send(client, "Question")
    for text in ("First answer", "Corrected answer"):
        client.post(
            "/api/messages/reply",
            json={"text": text, "userId": "42", "messageId": original["id"]},
        )

    listed = {item["id"]: item for item in client.get("/api/messages").json()["messages"]}

    assert listed[original["id"]]["reply"]["text"] == "Corrected answer"


def test_reply_to_unknown_message(client):
    response = client.post(
        "/api/messages/reply", json={"text": "Hello", "userId": "42", "messageId": 999}
    )

    assert response.status_code == 404
    assert client.get("/api/messages").json()["messages"] == []


def test_user_summary_counts_unanswered(client):
    answered = _send(client, "One")
    _send(client, "Two")
    _send(client, "Hi", user_id="43")
    client.post("/api/messages/reply", json={"text": "Ok", "userId": "42", "messageId": answered["id"]})

    summary = {item["userId"]: item for item in client.get("/api/messages/users").json()["users"]}

    assert summary["42"]["totalMessages"] == 2
    assert summary["42"]["unansweredMessages"] == 1
    assert summary["43"]["unansweredMessages"] == 1


def test_delete_removes_replies(client):
    original = _send(client, "Question")
    client.post("/api/messages/reply", json={"text": "Answer", "userId": "42", "messageId": original["id"]})

    response = client.delete(f"/api/messages/{original['id']}")

    assert response.status_code == 200
    assert response.json()["deleted"] == 2
    assert client.get("/api/messages").json()["messages"] == []
    assert client.delete(f"/api/messages/{original['id']}").status_code == 404


def test_blank_text_is_rejected(client):
    response = client.post("/api/messages", json={"text": "", "userId": "42"})

    assert response.status_code == 400
    assert response.json()["success"] is False
