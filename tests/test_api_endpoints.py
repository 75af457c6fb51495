"""
Tests for API Endpoints

This test suite verifies:
- Health check and root endpoints
- Password sign-in/sign-up and session handling
- Face registration, face sign-in and pending face sign-ups
- Study generation and history
- Versioned notes
- Identity provider webhooks
- Admin user management

Run with: pytest tests/test_api_endpoints.py -v

The store is a temporary SQLite database. The identity provider is an
AsyncMock and the completion service runs on httpx.MockTransport, so no
network access is needed.
"""

import base64
import json
import os
import shutil
import sys
import tempfile
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from buddy_api.app import app
from buddy_api.dependencies import (
    get_completion,
    get_db,
    get_identity,
    get_matcher,
    get_sessions,
    get_webhook,
)
from buddy_core.completion import CompletionClient
from buddy_core.identity import (
    Identity,
    IdentityConflict,
    IdentityProviderError,
    InvalidCredentials,
    WebhookVerifier,
)
from buddy_core.matching import CosineEmbeddingMatcher, normalize_embedding
from buddy_core.sessions import METHOD_FACE, METHOD_PASSWORD, SessionManager
from buddy_core.store import USER_ACTIVE, StoreError, StudyStore

DIM = 128
SESSION_SECRET = "test-session-secret-0123456789abcdef"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"webhook-test-key-0123456789").decode()

QUIZ = [{"question": "What is 2 + 2?", "choices": ["3", "4"], "answer": "4"}]


def unit(index: int) -> list:
    vector = np.zeros(DIM)
    vector[index] = 1.0
    return vector.tolist()


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def store():
    """Temporary store, removed after the test."""
    dirpath = tempfile.mkdtemp()
    s = StudyStore(db_path=os.path.join(dirpath, "api.sqlite"))
    yield s
    s.close()
    shutil.rmtree(dirpath)


@pytest.fixture
def sessions():
    return SessionManager(SESSION_SECRET)


@pytest.fixture
def identity():
    """Identity provider double with async methods."""
    mock = MagicMock()
    mock.verify_password = AsyncMock()
    mock.create_identity = AsyncMock()
    mock.get_identity = AsyncMock()
    mock.update_credential = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def completion_replies():
    """Responses the mocked completion service returns, in order."""
    return []


@pytest.fixture
def completion(completion_replies):
    def handler(request):
        return completion_replies.pop(0)

    return CompletionClient(
        {"base_url": "https://completion.test/api/v1", "api_key": "or_test"},
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def verifier():
    return WebhookVerifier(WEBHOOK_SECRET)


@pytest.fixture
def client(store, sessions, identity, completion, verifier):
    """Create test client with every collaborator overridden."""
    app.dependency_overrides[get_db] = lambda: store
    app.dependency_overrides[get_sessions] = lambda: sessions
    app.dependency_overrides[get_identity] = lambda: identity
    app.dependency_overrides[get_completion] = lambda: completion
    app.dependency_overrides[get_webhook] = lambda: verifier
    app.dependency_overrides[get_matcher] = lambda: CosineEmbeddingMatcher(
        {"accept_threshold": 0.6, "embedding_dim": DIM}
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def alice(store):
    return store.create_user(email="alice@example.com", external_id="user_alice", first_name="Alice")


def bearer(sessions, user, method=METHOD_PASSWORD):
    return {"Authorization": f"Bearer {sessions.issue(user['user_id'], method)}"}


def chat_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


# ============================================================
# System
# ============================================================

class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check_returns_status(self, client, store, alice):
        store.add_face_embedding(alice["user_id"], unit(0))

        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["database_ok"] is True
        assert data["total_users"] == 1
        assert data["enrolled_faces"] == 1
        assert data["status"] in ("healthy", "degraded")
        assert "identity_configured" in data
        assert "completion_configured" in data

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert "name" in data
        assert "version" in data
        assert "docs" in data


# ============================================================
# Password authentication
# ============================================================

class TestPasswordAuth:
    """Tests for /auth endpoints."""

    def test_sign_in_creates_local_user(self, client, store, identity):
        identity.verify_password.return_value = Identity(
            external_id="user_alice", email="alice@example.com", first_name="Alice"
        )

        response = client.post(
            "/auth/sign-in", json={"email": "alice@example.com", "password": "hunter22"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["method"] == METHOD_PASSWORD
        assert data["token"]
        assert data["user"]["email"] == "alice@example.com"
        assert store.get_user_by_external_id("user_alice") is not None
        assert "study_session" in response.cookies

    def test_session_cookie_authenticates(self, client, identity):
        identity.verify_password.return_value = Identity(
            external_id="user_alice", email="alice@example.com"
        )
        client.post("/auth/sign-in", json={"email": "alice@example.com", "password": "hunter22"})

        response = client.get("/auth/me")
        assert response.status_code == 200
        assert response.json()["method"] == METHOD_PASSWORD

    def test_sign_in_invalid_credentials(self, client, store, identity):
        identity.verify_password.side_effect = InvalidCredentials("Invalid email or password")

        response = client.post(
            "/auth/sign-in", json={"email": "alice@example.com", "password": "wrong"}
        )

        assert response.status_code == 401
        [log] = store.get_auth_logs()
        assert log["success"] is False
        assert log["method"] == METHOD_PASSWORD

    def test_sign_in_provider_down(self, client, identity):
        identity.verify_password.side_effect = IdentityProviderError("unreachable")
        response = client.post(
            "/auth/sign-in", json={"email": "alice@example.com", "password": "hunter22"}
        )
        assert response.status_code == 502

    def test_sign_up(self, client, store, identity):
        identity.create_identity.return_value = Identity(
            external_id="user_new", email="new@example.com", first_name="New"
        )

        response = client.post(
            "/auth/sign-up",
            json={"email": "new@example.com", "password": "long-password", "first_name": "New"},
        )

        assert response.status_code == 200
        assert identity.create_identity.call_args.kwargs["password"] == "long-password"
        assert store.get_user_by_email("new@example.com")["external_id"] == "user_new"

    def test_sign_up_existing_email(self, client, alice, identity):
        response = client.post(
            "/auth/sign-up", json={"email": "alice@example.com", "password": "long-password"}
        )
        assert response.status_code == 409
        identity.create_identity.assert_not_called()

    def test_sign_up_upstream_conflict(self, client, identity):
        identity.create_identity.side_effect = IdentityConflict("taken")
        response = client.post(
            "/auth/sign-up", json={"email": "new@example.com", "password": "long-password"}
        )
        assert response.status_code == 409

    def test_sign_up_short_password(self, client, identity):
        response = client.post(
            "/auth/sign-up", json={"email": "new@example.com", "password": "short"}
        )
        assert response.status_code == 422
        identity.create_identity.assert_not_called()

    def test_sign_up_local_write_fails(self, client, store, identity):
        identity.create_identity.return_value = Identity(
            external_id="user_new", email="new@example.com"
        )
        with patch.object(store, "upsert_user_from_identity", side_effect=StoreError("disk full")):
            response = client.post(
                "/auth/sign-up", json={"email": "new@example.com", "password": "long-password"}
            )
        assert response.status_code == 500

    def test_me_requires_session(self, client):
        assert client.get("/auth/me").status_code == 401

    def test_me_rejects_bad_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_me(self, client, sessions, alice, store):
        store.add_face_embedding(alice["user_id"], unit(0))
        response = client.get("/auth/me", headers=bearer(sessions, alice, METHOD_FACE))

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["user_id"] == alice["user_id"]
        assert data["method"] == METHOD_FACE
        assert data["has_face_embedding"] is True

    def test_me_for_deleted_user(self, client, sessions, alice, store):
        headers = bearer(sessions, alice)
        store.delete_user(alice["user_id"])
        assert client.get("/auth/me", headers=headers).status_code == 404

    def test_sign_out(self, client):
        response = client.post("/auth/sign-out")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_sync(self, client, sessions, alice, identity):
        identity.get_identity.return_value = Identity(
            external_id="user_alice", email="alice@example.com", first_name="Alicia"
        )
        response = client.post("/auth/sync", headers=bearer(sessions, alice))
        assert response.status_code == 200
        assert response.json()["first_name"] == "Alicia"

    def test_update_password(self, client, sessions, alice, identity):
        response = client.post(
            "/auth/password", json={"new_password": "new-long-password"},
            headers=bearer(sessions, alice),
        )
        assert response.status_code == 200
        identity.update_credential.assert_awaited_once_with("user_alice", "new-long-password")


# ============================================================
# Face authentication
# ============================================================

class TestFaceEndpoints:
    """Tests for /face endpoints."""

    def test_register_requires_session(self, client):
        assert client.post("/face/register", json={"embedding": unit(0)}).status_code == 401

    def test_register_wrong_dimension(self, client, sessions, alice):
        response = client.post(
            "/face/register", json={"embedding": [0.1] * 64}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 400

    def test_register_then_login(self, client, sessions, alice, store):
        response = client.post(
            "/face/register", json={"embedding": unit(0)}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 200
        assert store.has_face_embedding(alice["user_id"])

        response = client.post("/face/login", json={"embedding": unit(0)})
        assert response.status_code == 200
        data = response.json()
        assert data["user"]["user_id"] == alice["user_id"]
        assert data["method"] == METHOD_FACE
        assert data["similarity"] == pytest.approx(1.0)

        claims = sessions.verify(data["token"])
        assert claims.method == METHOD_FACE

    def test_login_two_users(self, client, store):
        user_a = store.create_user(email="a@example.com")
        user_b = store.create_user(email="b@example.com")
        store.add_face_embedding(user_a["user_id"], unit(0))
        store.add_face_embedding(user_b["user_id"], unit(1))

        probe = np.zeros(DIM)
        probe[0], probe[1] = 0.99, 0.14
        probe = normalize_embedding(probe).tolist()

        response = client.post("/face/login", json={"embedding": probe})

        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == user_a["user_id"]
        assert response.json()["similarity"] == pytest.approx(0.99, abs=0.01)

    def test_login_not_recognized(self, client, store, alice):
        store.add_face_embedding(alice["user_id"], unit(0))

        response = client.post("/face/login", json={"embedding": unit(5)})

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "Face not recognized"
        assert data["similarity"] == pytest.approx(0.0)
        [log] = store.get_auth_logs()
        assert log["success"] is False

    def test_login_no_enrolled_faces(self, client):
        response = client.post("/face/login", json={"embedding": unit(0)})
        assert response.status_code == 401

    def test_login_with_email_is_one_to_one(self, client, store, alice):
        bob = store.create_user(email="bob@example.com")
        store.add_face_embedding(alice["user_id"], unit(0))
        store.add_face_embedding(bob["user_id"], unit(1))

        response = client.post(
            "/face/login", json={"embedding": unit(1), "email": "alice@example.com"}
        )
        assert response.status_code == 401

        response = client.post(
            "/face/login", json={"embedding": unit(1), "email": "bob@example.com"}
        )
        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == bob["user_id"]

    def test_login_with_email_without_face(self, client, alice):
        response = client.post(
            "/face/login", json={"embedding": unit(0), "email": "alice@example.com"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Face not recognized", "similarity": 0.0}

    def test_login_with_unknown_email_looks_like_mismatch(self, client, store, alice):
        store.add_face_embedding(alice["user_id"], unit(0))

        unknown = client.post(
            "/face/login", json={"embedding": unit(0), "email": "nobody@example.com"}
        )
        mismatch = client.post(
            "/face/login", json={"embedding": unit(1), "email": "alice@example.com"}
        )

        assert unknown.status_code == mismatch.status_code == 401
        assert unknown.json() == mismatch.json()

    def test_login_ignores_pending_faces(self, client, store):
        store.create_pending_user("carol@example.com", unit(0))
        response = client.post("/face/login", json={"embedding": unit(0)})
        assert response.status_code == 401

    def test_remove_face(self, client, sessions, alice, store):
        store.add_face_embedding(alice["user_id"], unit(0))
        headers = bearer(sessions, alice)

        assert client.delete("/face/register", headers=headers).status_code == 200
        assert not store.has_face_embedding(alice["user_id"])
        assert client.delete("/face/register", headers=headers).status_code == 404

    def test_pending_lifecycle(self, client):
        response = client.post(
            "/face/pending", json={"email": "carol@example.com", "embedding": unit(3)}
        )
        assert response.status_code == 200

        response = client.get("/face/pending", params={"email": "carol@example.com"})
        assert response.status_code == 200
        assert response.json()["face_embedding"] == pytest.approx(unit(3))

        response = client.request(
            "DELETE", "/face/pending", json={"email": "carol@example.com"}
        )
        assert response.json()["deleted"] == 1

        response = client.get("/face/pending", params={"email": "carol@example.com"})
        assert response.status_code == 404

    def test_pending_for_existing_account(self, client, alice):
        response = client.post(
            "/face/pending", json={"email": "alice@example.com", "embedding": unit(0)}
        )
        assert response.status_code == 409

    def test_face_sign_up_from_pending(self, client, store, identity):
        client.post("/face/pending", json={"email": "carol@example.com", "embedding": unit(2)})
        identity.create_identity.return_value = Identity(
            external_id="user_carol", email="carol@example.com", first_name="Carol"
        )

        response = client.post(
            "/face/sign-up", json={"email": "carol@example.com", "first_name": "Carol"}
        )

        assert response.status_code == 200
        assert response.json()["method"] == METHOD_FACE
        assert "password" not in identity.create_identity.call_args.kwargs

        user = store.get_user_by_email("carol@example.com")
        assert user["status"] == USER_ACTIVE
        assert user["external_id"] == "user_carol"

        response = client.post("/face/login", json={"embedding": unit(2)})
        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == user["user_id"]

    def test_password_sign_up_discards_pending_face(self, client, store, identity):
        client.post("/face/pending", json={"email": "victim@example.com", "embedding": unit(7)})
        identity.create_identity.return_value = Identity(
            external_id="user_victim", email="victim@example.com"
        )

        response = client.post(
            "/auth/sign-up",
            json={"email": "victim@example.com", "password": "long-password"},
        )
        assert response.status_code == 200
        victim_id = response.json()["user"]["user_id"]
        assert store.list_face_embeddings(user_id=victim_id) == []

        client.cookies.clear()
        response = client.post("/face/login", json={"embedding": unit(7)})
        assert response.status_code == 401

    def test_password_sign_in_discards_pending_face(self, client, store, identity):
        client.post("/face/pending", json={"email": "victim@example.com", "embedding": unit(7)})
        identity.verify_password.return_value = Identity(
            external_id="user_victim", email="victim@example.com"
        )

        response = client.post(
            "/auth/sign-in", json={"email": "victim@example.com", "password": "hunter22"}
        )
        assert response.status_code == 200

        client.cookies.clear()
        response = client.post(
            "/face/login", json={"embedding": unit(7), "email": "victim@example.com"}
        )
        assert response.status_code == 401

    def test_face_sign_up_with_embedding(self, client, store, identity):
        identity.create_identity.return_value = Identity(
            external_id="user_dave", email="dave@example.com"
        )
        response = client.post(
            "/face/sign-up", json={"email": "dave@example.com", "embedding": unit(4)}
        )
        assert response.status_code == 200
        user = store.get_user_by_email("dave@example.com")
        assert store.has_face_embedding(user["user_id"])

    def test_face_sign_up_without_embedding(self, client, identity):
        response = client.post("/face/sign-up", json={"email": "erin@example.com"})
        assert response.status_code == 400
        identity.create_identity.assert_not_called()

    def test_face_sign_up_existing_account(self, client, alice, identity):
        response = client.post(
            "/face/sign-up", json={"email": "alice@example.com", "embedding": unit(0)}
        )
        assert response.status_code == 409


# ============================================================
# Study
# ============================================================

class TestStudyEndpoints:
    """Tests for completion-backed routes and history."""

    def test_generate_plan_requires_session(self, client):
        assert client.post("/generate-plan", json={"topic": "cells"}).status_code == 401

    def test_generate_plan(self, client, sessions, alice, completion_replies):
        completion_replies.append(chat_reply("1. Learn what a cell is"))
        response = client.post(
            "/generate-plan", json={"topic": "cells"}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 200
        assert response.json()["plan"] == "1. Learn what a cell is"

    def test_generate_quiz(self, client, sessions, alice, completion_replies):
        completion_replies.append(chat_reply("Here you go:\n```json\n" + json.dumps(QUIZ) + "\n```"))
        response = client.post(
            "/generate-quiz", json={"topic": "arithmetic"}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 200
        assert response.json()["quiz"] == QUIZ

    def test_generate_quiz_unparseable(self, client, sessions, alice, completion_replies):
        completion_replies.append(chat_reply("I cannot make a quiz about that."))
        response = client.post(
            "/generate-quiz", json={"topic": "arithmetic"}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 200
        assert response.json()["quiz"] == []

    def test_explain_answer(self, client, sessions, alice, completion_replies):
        completion_replies.append(chat_reply("Because 2 + 2 = 4."))
        response = client.post(
            "/explain-answer",
            json={"question": "What is 2 + 2?", "answer": "4", "user_answer": "3", "topic": "math"},
            headers=bearer(sessions, alice),
        )
        assert response.status_code == 200
        assert response.json()["explanation"] == "Because 2 + 2 = 4."

    def test_upstream_failure(self, client, sessions, alice, completion_replies):
        completion_replies.append(httpx.Response(500, text="boom"))
        response = client.post(
            "/generate-plan", json={"topic": "cells"}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 502

    def test_not_configured(self, client, sessions, alice):
        app.dependency_overrides[get_completion] = lambda: CompletionClient({"api_key": None})
        response = client.post(
            "/generate-plan", json={"topic": "cells"}, headers=bearer(sessions, alice)
        )
        assert response.status_code == 503

    def test_history(self, client, sessions, alice):
        headers = bearer(sessions, alice)

        response = client.post(
            "/learning-plans", json={"topic": "cells", "content": "Step 1"}, headers=headers
        )
        assert response.status_code == 200
        assert response.json()["plan"]["topic"] == "cells"

        response = client.post(
            "/quiz-results",
            json={"topic": "arithmetic", "questions": QUIZ, "answers": ["4"], "score": 1},
            headers=headers,
        )
        assert response.status_code == 200

        response = client.get("/history", headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert [p["topic"] for p in data["plans"]] == ["cells"]
        assert data["quizzes"][0]["questions"] == QUIZ
        assert data["quizzes"][0]["score"] == 1.0

    def test_history_is_owner_scoped(self, client, sessions, alice, store):
        bob = store.create_user(email="bob@example.com")
        store.save_learning_plan(alice["user_id"], "cells", "Step 1")

        response = client.get("/history", headers=bearer(sessions, bob))
        assert response.json()["plans"] == []


# ============================================================
# Notes
# ============================================================

class TestNotesEndpoints:
    """Tests for /notes endpoints."""

    def test_create_defaults(self, client, sessions, alice):
        response = client.post("/notes", json={}, headers=bearer(sessions, alice))
        assert response.status_code == 201
        assert response.json()["title"] == "Untitled Note"

    def test_update_and_restore(self, client, sessions, alice):
        headers = bearer(sessions, alice)
        note = client.post(
            "/notes", json={"title": "Cells", "content": "<p>v0</p>", "tags": ["bio"]},
            headers=headers,
        ).json()

        for i in range(1, 4):
            response = client.patch(
                f"/notes/{note['id']}", json={"content": f"<p>v{i}</p>"}, headers=headers
            )
            assert response.status_code == 200

        versions = client.get(f"/notes/{note['id']}/versions", headers=headers).json()["versions"]
        assert len(versions) == 3
        first = versions[-1]
        assert first["content"] == "<p>v0</p>"

        response = client.post(f"/notes/versions/{first['id']}/restore", headers=headers)
        assert response.status_code == 200
        assert response.json()["content"] == "<p>v0</p>"
        assert response.json()["tags"] == ["bio"]

        versions = client.get(f"/notes/{note['id']}/versions", headers=headers).json()["versions"]
        assert len(versions) == 4
        assert versions[0]["content"] == "<p>v3</p>"

    def test_pin_does_not_version(self, client, sessions, alice):
        headers = bearer(sessions, alice)
        note = client.post("/notes", json={"title": "Pinned"}, headers=headers).json()

        response = client.patch(f"/notes/{note['id']}", json={"is_pinned": True}, headers=headers)
        assert response.json()["is_pinned"] is True

        versions = client.get(f"/notes/{note['id']}/versions", headers=headers).json()["versions"]
        assert versions == []

    def test_foreign_note_is_not_found(self, client, sessions, alice, store):
        bob = store.create_user(email="bob@example.com")
        note = client.post(
            "/notes", json={"title": "Private"}, headers=bearer(sessions, alice)
        ).json()
        client.patch(f"/notes/{note['id']}", json={"content": "x"}, headers=bearer(sessions, alice))
        [version] = store.list_note_versions(alice["user_id"], note["id"])

        bob_headers = bearer(sessions, bob)
        assert client.get(f"/notes/{note['id']}", headers=bob_headers).status_code == 404
        assert client.patch(
            f"/notes/{note['id']}", json={"title": "Mine"}, headers=bob_headers
        ).status_code == 404
        assert client.delete(f"/notes/{note['id']}", headers=bob_headers).status_code == 404
        assert client.post(
            f"/notes/versions/{version['id']}/restore", headers=bob_headers
        ).status_code == 404

    def test_list_and_delete(self, client, sessions, alice):
        headers = bearer(sessions, alice)
        note = client.post("/notes", json={"title": "Temp"}, headers=headers).json()

        assert len(client.get("/notes", headers=headers).json()["notes"]) == 1
        assert client.delete(f"/notes/{note['id']}", headers=headers).status_code == 200
        assert client.get("/notes", headers=headers).json()["notes"] == []


# ============================================================
# Webhooks
# ============================================================

def post_webhook(client, verifier, event, signature=None):
    body = json.dumps(event).encode()
    timestamp = int(time.time())
    headers = {
        "svix-id": "msg_test",
        "svix-timestamp": str(timestamp),
        "svix-signature": signature or verifier.sign("msg_test", timestamp, body),
        "content-type": "application/json",
    }
    return client.post("/webhooks/identity", content=body, headers=headers)


def identity_event(event_type, external_id="user_web", email="web@example.com", **extra):
    data = {
        "id": external_id,
        "first_name": "Web",
        "last_name": None,
        "primary_email_address_id": "idn_1",
        "email_addresses": [{"id": "idn_1", "email_address": email}],
    }
    data.update(extra)
    return {"type": event_type, "data": data}


class TestWebhookEndpoint:
    """Tests for /webhooks/identity."""

    def test_user_created(self, client, store, verifier):
        response = post_webhook(client, verifier, identity_event("user.created"))
        assert response.status_code == 200
        assert response.json()["event_type"] == "user.created"
        assert store.get_user_by_external_id("user_web")["email"] == "web@example.com"

    def test_user_created_discards_pending_face(self, client, store, verifier):
        client.post("/face/pending", json={"email": "web@example.com", "embedding": unit(7)})

        response = post_webhook(client, verifier, identity_event("user.created"))

        assert response.status_code == 200
        user = store.get_user_by_external_id("user_web")
        assert user["status"] == USER_ACTIVE
        assert store.list_face_embeddings(user_id=user["user_id"]) == []

    def test_user_created_twice(self, client, store, verifier):
        post_webhook(client, verifier, identity_event("user.created"))
        response = post_webhook(client, verifier, identity_event("user.created"))
        assert response.status_code == 200
        assert len(store.list_users()) == 1

    def test_user_updated(self, client, store, verifier):
        post_webhook(client, verifier, identity_event("user.created"))
        post_webhook(client, verifier, identity_event("user.updated", first_name="Renamed"))
        assert store.get_user_by_external_id("user_web")["first_name"] == "Renamed"

    def test_user_deleted(self, client, store, verifier):
        post_webhook(client, verifier, identity_event("user.created"))

        response = post_webhook(client, verifier, {"type": "user.deleted", "data": {"id": "user_web"}})
        assert response.status_code == 200
        assert store.get_user_by_external_id("user_web") is None

        response = post_webhook(client, verifier, {"type": "user.deleted", "data": {"id": "user_web"}})
        assert response.status_code == 200

    def test_bad_signature(self, client, store, verifier):
        response = post_webhook(
            client, verifier, identity_event("user.created"), signature="v1,bm90LXZhbGlk"
        )
        assert response.status_code == 400
        assert store.list_users() == []

    def test_unhandled_event(self, client, verifier):
        response = post_webhook(client, verifier, {"type": "session.created", "data": {}})
        assert response.status_code == 200
        assert response.json()["event_type"] == "session.created"


# ============================================================
# User management
# ============================================================

class TestUserManagementEndpoints:
    """Tests for admin user management endpoints."""

    @pytest.fixture
    def admin_token(self):
        with patch("buddy_api.dependencies.get_api_config", return_value={"admin_token": "admin-secret"}):
            yield "admin-secret"

    def test_disabled_without_admin_token(self, client, alice):
        with patch("buddy_api.dependencies.get_api_config", return_value={"admin_token": None}):
            assert client.get("/users").status_code == 404

    def test_wrong_admin_token(self, client, admin_token):
        response = client.get("/users", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403

    def test_list_users(self, client, admin_token, alice, store):
        store.create_pending_user("carol@example.com", unit(0))
        headers = {"X-Admin-Token": admin_token}

        data = client.get("/users", headers=headers).json()
        assert data["total"] == 2

        data = client.get("/users", params={"status": "active"}, headers=headers).json()
        assert [u["email"] for u in data["users"]] == ["alice@example.com"]

    def test_get_user(self, client, admin_token, alice, store):
        store.add_face_embedding(alice["user_id"], unit(0))
        store.log_authentication(alice["user_id"], METHOD_FACE, True, 0.97)

        response = client.get(f"/users/{alice['user_id']}", headers={"X-Admin-Token": admin_token})

        assert response.status_code == 200
        data = response.json()
        assert data["has_face_embedding"] is True
        assert data["recent_auth_attempts"] == 1

    def test_get_missing_user(self, client, admin_token):
        response = client.get("/users/usr_missing", headers={"X-Admin-Token": admin_token})
        assert response.status_code == 404

    def test_delete_user(self, client, admin_token, alice, store):
        headers = {"X-Admin-Token": admin_token}

        response = client.delete(f"/users/{alice['user_id']}", headers=headers)
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert store.get_user(alice["user_id"]) is None

        assert client.delete(f"/users/{alice['user_id']}", headers=headers).status_code == 404
