"""Tests for messaging: receiver resolution, job threads and admin chat."""

import pytest
from fakes import add_job, add_provider, add_user
from pydantic import ValidationError
from sasa.messaging.models import ADMIN_THREAD_ID, MessageCreate
from sasa.messaging.service import resolve_receiver

JOB = {"id": "job-1", "requester_id": "req-1", "provider_id": "prov-1"}


class TestResolveReceiver:
    def test_explicit_receiver_wins(self):
        message = MessageCreate(message_text="hi", job_id="job-1", receiver_id="someone")
        assert resolve_receiver(message, "req-1", JOB) == "someone"

    def test_requester_writes_to_assigned_provider(self):
        message = MessageCreate(message_text="hi", job_id="job-1")
        assert resolve_receiver(message, "req-1", JOB) == "prov-1"

    def test_requester_on_unassigned_job_has_no_receiver(self):
        message = MessageCreate(message_text="hi", job_id="job-1")
        assert resolve_receiver(message, "req-1", {**JOB, "provider_id": None}) is None

    def test_anyone_else_writes_to_requester(self):
        message = MessageCreate(message_text="hi", job_id="job-1")
        assert resolve_receiver(message, "prov-1", JOB) == "req-1"
        assert resolve_receiver(message, "applicant-7", JOB) == "req-1"

    def test_admin_message_without_receiver(self):
        message = MessageCreate(message_text="hi", job_id="job-1", message_type="admin_message")
        assert resolve_receiver(message, "req-1", JOB) is None

    def test_no_job_no_receiver(self):
        message = MessageCreate(message_text="hi", job_id="job-1")
        assert resolve_receiver(message, "req-1", None) is None

    def test_destination_required(self):
        with pytest.raises(ValidationError):
            MessageCreate(message_text="hi")

    def test_camel_case_input(self):
        message = MessageCreate.model_validate({"messageText": "hi", "jobId": "job-1", "messageType": "job_message"})
        assert message.job_id == "job-1"


@pytest.fixture
def requester(db):
    return add_user(db, name="Neo")


@pytest.fixture
def provider(db):
    return add_provider(db, name="Thabo")


@pytest.fixture
def assigned_job(db, requester, provider):
    return add_job(db, requester["id"], status="accepted", provider_id=provider["id"])


class TestJobMessages:
    def test_requester_message_reaches_provider(self, client, db, headers_for, requester, provider, assigned_job):
        response = client.post(
            "/api/messages",
            json={"jobId": assigned_job["id"], "messageText": "When can you come?"},
            headers=headers_for(requester),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["receiverId"] == provider["id"]
        assert data["senderId"] == requester["id"]
        assert data["sender"]["name"] == "Neo"
        assert data["isRead"] is False

        [notification] = db.rows("notifications", recipient_id=provider["id"])
        assert notification["type"] == "message_received"
        assert notification["title"] == "New message from Neo"
        assert notification["message"] == "When can you come?"

    def test_unknown_job(self, client, headers_for, requester):
        response = client.post(
            "/api/messages",
            json={"jobId": "missing", "messageText": "hello"},
            headers=headers_for(requester),
        )

        assert response.status_code == 404

    def test_message_without_receiver_is_kept(self, client, db, headers_for, requester):
        job = add_job(db, requester["id"])

        response = client.post(
            "/api/messages",
            json={"jobId": job["id"], "messageText": "Anyone?"},
            headers=headers_for(requester),
        )

        assert response.status_code == 201
        assert response.json()["receiverId"] is None
        assert len(db.rows("messages")) == 1
        assert db.rows("notifications") == []

    def test_empty_text_rejected(self, client, headers_for, requester, assigned_job):
        response = client.post(
            "/api/messages",
            json={"jobId": assigned_job["id"], "messageText": ""},
            headers=headers_for(requester),
        )

        assert response.status_code == 400

    def test_outsiders_only_see_their_own_messages(self, client, db, headers_for, requester):
        job = add_job(db, requester["id"], status="pending_selection")
        first = add_provider(db)
        second = add_provider(db)
        for applicant in (first, second):
            client.post(
                "/api/messages",
                json={"jobId": job["id"], "messageText": "Interested"},
                headers=headers_for(applicant),
            )
        client.post(
            "/api/messages",
            json={"jobId": job["id"], "receiverId": first["id"], "messageText": "Can you send photos?"},
            headers=headers_for(requester),
        )

        full = client.get(f"/api/messages/{job['id']}", headers=headers_for(requester)).json()
        partial = client.get(f"/api/messages/{job['id']}", headers=headers_for(second)).json()
        first_view = client.get(f"/api/messages/{job['id']}", headers=headers_for(first)).json()

        assert len(full) == 3
        assert [m["senderId"] for m in partial] == [second["id"]]
        assert len(first_view) == 2
        assert full[0]["createdAt"] <= full[-1]["createdAt"]

    def test_inbox_and_unread_count(self, client, db, headers_for, requester, provider, assigned_job):
        client.post(
            "/api/messages",
            json={"jobId": assigned_job["id"], "messageText": "On my way"},
            headers=headers_for(provider),
        )
        client.post(
            "/api/messages",
            json={"jobId": assigned_job["id"], "messageText": "Thanks"},
            headers=headers_for(requester),
        )

        everything = client.get("/api/messages", headers=headers_for(requester)).json()
        unread = client.get("/api/messages?unread=true", headers=headers_for(requester)).json()
        count = client.get("/api/messages/unread-count", headers=headers_for(requester)).json()

        assert [m["messageText"] for m in everything] == ["Thanks", "On my way"]
        assert [m["messageText"] for m in unread] == ["On my way"]
        assert count == {"count": 1}

    def test_conversations_list_job_threads(self, client, db, headers_for, requester, provider, assigned_job):
        client.post(
            "/api/messages",
            json={"jobId": assigned_job["id"], "messageText": "On my way"},
            headers=headers_for(provider),
        )

        response = client.get("/api/messages/conversations", headers=headers_for(requester))

        assert response.status_code == 200
        [conversation] = response.json()
        assert conversation["jobId"] == assigned_job["id"]
        assert conversation["jobTitle"] == "Fix leaking tap"
        assert conversation["otherUser"]["id"] == provider["id"]
        assert conversation["lastMessage"] == "On my way"
        assert conversation["unreadCount"] == 1


class TestAdminChat:
    def test_user_writes_to_primary_admin(self, client, db, headers_for, requester):
        admin = add_user(db, role="admin", name="Support")
        add_user(db, role="admin", name="Backup")

        response = client.post(
            "/api/messages/admin-chat",
            json={"messageText": "My provider never arrived"},
            headers=headers_for(requester),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["receiverId"] == admin["id"]
        assert data["messageType"] == "admin_message"
        assert db.rows("notifications", recipient_id=admin["id"], type="message_received")

    def test_admin_type_between_users_is_refused(self, client, db, headers_for, requester, provider):
        response = client.post(
            "/api/messages",
            json={"messageText": "Official notice", "receiverId": provider["id"], "messageType": "admin_message"},
            headers=headers_for(requester),
        )

        assert response.status_code == 403
        assert response.json()["code"] == "ADMIN_MESSAGE_FORBIDDEN"
        assert db.rows("messages") == []
        assert db.rows("notifications", recipient_id=provider["id"]) == []

    def test_admin_type_to_or_from_admin_is_allowed(self, client, db, headers_for, requester):
        admin = add_user(db, role="admin")

        to_admin = client.post(
            "/api/messages",
            json={"messageText": "Help", "receiverId": admin["id"], "messageType": "admin_message"},
            headers=headers_for(requester),
        )
        from_admin = client.post(
            "/api/messages",
            json={"messageText": "On it", "receiverId": requester["id"], "messageType": "admin_message"},
            headers=headers_for(admin),
        )

        assert to_admin.status_code == 201
        assert from_admin.status_code == 201

    def test_no_admin_account(self, client, headers_for, requester):
        response = client.post(
            "/api/messages/admin-chat",
            json={"messageText": "Hello?"},
            headers=headers_for(requester),
        )

        assert response.status_code == 404

    def test_admin_must_name_receiver(self, client, db, headers_for, requester):
        admin = add_user(db, role="admin")

        missing = client.post("/api/messages/admin-chat", json={"messageText": "Hi"}, headers=headers_for(admin))
        named = client.post(
            "/api/messages/admin-chat",
            json={"messageText": "Hi", "receiverId": requester["id"]},
            headers=headers_for(admin),
        )

        assert missing.status_code == 400
        assert named.status_code == 201
        assert named.json()["receiverId"] == requester["id"]

    def test_thread_reads_and_read_all(self, client, db, headers_for, requester):
        admin = add_user(db, role="admin")
        client.post("/api/messages/admin-chat", json={"messageText": "Help"}, headers=headers_for(requester))
        client.post(
            "/api/messages/admin-chat",
            json={"messageText": "On it", "receiverId": requester["id"]},
            headers=headers_for(admin),
        )

        user_view = client.get("/api/messages/admin-chat", headers=headers_for(requester)).json()
        admin_view = client.get(
            f"/api/messages/admin-chat?userId={requester['id']}", headers=headers_for(admin)
        ).json()
        assert [m["messageText"] for m in user_view] == ["Help", "On it"]
        assert admin_view == user_view

        response = client.post("/api/messages/admin-chat/read-all", headers=headers_for(requester))

        assert response.json() == {"success": True, "unreadCount": 0}
        assert db.rows("messages", receiver_id=requester["id"])[0]["is_read"] is True

    def test_admin_thread_needs_user_id(self, client, db, headers_for):
        admin = add_user(db, role="admin")

        response = client.get("/api/messages/admin-chat", headers=headers_for(admin))

        assert response.status_code == 400

    def test_admin_thread_in_user_conversations(self, client, db, headers_for, requester):
        add_user(db, role="admin", name="Support")
        client.post("/api/messages/admin-chat", json={"messageText": "Help"}, headers=headers_for(requester))

        [conversation] = client.get("/api/messages/conversations", headers=headers_for(requester)).json()

        assert conversation["jobId"] == ADMIN_THREAD_ID
        assert conversation["messageType"] == "admin_message"
        assert conversation["otherUser"]["name"] == "Support"

    def test_admin_inbox_groups_by_user(self, client, db, headers_for, requester, provider):
        admin = add_user(db, role="admin")
        for user in (requester, provider, requester):
            client.post("/api/messages/admin-chat", json={"messageText": "Help"}, headers=headers_for(user))

        threads = client.get("/api/messages/conversations", headers=headers_for(admin)).json()

        assert [t["userId"] for t in threads] == [requester["id"], provider["id"]]
        assert threads[0]["unreadCount"] == 2
        assert threads[0]["user"]["id"] == requester["id"]
        assert admin["id"] not in [t["userId"] for t in threads]
