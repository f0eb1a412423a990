from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.dependencies import get_conversation_service
from api.middleware.auth import get_current_user
from api.middleware.exception_handlers import register_exception_handlers
from api.routes.v1.conversations import router
from models.schemas.auth import UserInfo

USER_ID = "auth0|user-1"
CONVERSATION_ID = "550e8400-e29b-41d4-a716-446655440000"
NOW = datetime(2025, 1, 15, 10, 30, tzinfo=UTC)


def _conversation(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": CONVERSATION_ID,
        "title": "Weather",
        "user_id": USER_ID,
        "created_at": NOW,
        "updated_at": NOW,
        "last_message": "",
    }
    row.update(overrides)
    return row


def _message(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": "0b7f1d2e-6c39-4a8e-9f5d-2a1b3c4d5e6f",
        "conversation_id": CONVERSATION_ID,
        "role": "assistant",
        "content": "It is sunny.",
        "created_at": NOW,
        "reasoning": None,
        "function_calls": None,
        "function_outputs": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def mock_conversation_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def app(mock_conversation_service: AsyncMock) -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router, prefix="/conversations")
    app.dependency_overrides[get_conversation_service] = lambda: mock_conversation_service
    app.dependency_overrides[get_current_user] = lambda: UserInfo(id=USER_ID)
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


def test_list_conversations(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.list_conversations.return_value = [_conversation(last_message="It is sunny.")]

    response = client.get("/conversations?limit=10&offset=5")

    assert response.status_code == 200
    conversation = response.json()["conversations"][0]
    assert conversation["userId"] == USER_ID
    assert conversation["lastMessage"] == "It is sunny."
    mock_conversation_service.list_conversations.assert_awaited_once_with(USER_ID, limit=10, offset=5)


def test_list_conversations_limit_bounds(client: TestClient) -> None:
    assert client.get("/conversations?limit=0").status_code == 422
    assert client.get("/conversations?limit=201").status_code == 422


def test_create_conversation(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.create_conversation.return_value = _conversation(title="Trip planning")

    response = client.post("/conversations", json={"title": "Trip planning"})

    assert response.status_code == 201
    assert response.json()["title"] == "Trip planning"
    mock_conversation_service.create_conversation.assert_awaited_once_with(USER_ID, "Trip planning")


def test_get_conversation(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.get_conversation.return_value = _conversation()

    response = client.get(f"/conversations/{CONVERSATION_ID}")

    assert response.status_code == 200
    assert response.json()["id"] == CONVERSATION_ID


def test_get_conversation_not_found(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.get_conversation.return_value = None

    response = client.get(f"/conversations/{CONVERSATION_ID}")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "CNV_4001"


def test_invalid_conversation_id(client: TestClient) -> None:
    assert client.get("/conversations/not-a-uuid").status_code == 422


def test_update_conversation(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.update_conversation.return_value = _conversation(title="Paris trip")

    response = client.put(f"/conversations/{CONVERSATION_ID}", json={"title": "Paris trip"})

    assert response.status_code == 200
    assert response.json()["title"] == "Paris trip"


def test_delete_conversation(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.delete_conversation.return_value = True

    response = client.delete(f"/conversations/{CONVERSATION_ID}")

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_delete_conversation_not_found(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.delete_conversation.return_value = False

    assert client.delete(f"/conversations/{CONVERSATION_ID}").status_code == 404


def test_list_messages(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.list_messages.return_value = [
        _message(function_calls=[{"id": "call_1", "name": "get_weather", "arguments": {}}])
    ]

    response = client.get(f"/conversations/{CONVERSATION_ID}/messages")

    assert response.status_code == 200
    message = response.json()[0]
    assert message["conversationId"] == CONVERSATION_ID
    assert message["functionCalls"][0]["name"] == "get_weather"


def test_list_messages_not_found(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.list_messages.return_value = None

    assert client.get(f"/conversations/{CONVERSATION_ID}/messages").status_code == 404


def test_create_message(client: TestClient, mock_conversation_service: AsyncMock) -> None:
    mock_conversation_service.get_conversation.return_value = _conversation()
    mock_conversation_service.add_message.return_value = _message(role="system", content="Answer in French.")

    response = client.post(
        f"/conversations/{CONVERSATION_ID}/messages",
        json={"role": "system", "content": "Answer in French."},
    )

    assert response.status_code == 201
    assert response.json()["role"] == "system"
    mock_conversation_service.add_message.assert_awaited_once_with(
        CONVERSATION_ID, "system", "Answer in French.", reasoning=None
    )


def test_create_message_rejects_unknown_role(client: TestClient) -> None:
    response = client.post(f"/conversations/{CONVERSATION_ID}/messages", json={"role": "tool", "content": "x"})

    assert response.status_code == 422
