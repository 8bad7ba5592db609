import json

from docuchat import llm
from docuchat.relay import APOLOGY_MESSAGE

from conftest import OTHER_USER_ID, USER_ID


def _events(response):
    return [
        json.loads(line[len("data: "):])
        for line in response.text.split("\n\n")
        if line.startswith("data: ")
    ]


def _body(project_id, **overrides):
    body = {
        "messages": [{"role": "user", "content": "How much did revenue grow?"}],
        "projectId": project_id,
        "conversationId": "conv-1",
        "userId": USER_ID,
    }
    body.update(overrides)
    return body


def _fake_stream(captured, *lines):
    async def fake(model, input_payload):
        captured.append(input_payload)
        for line in lines:
            yield line
    return fake


class TestProjectChatStream:
    def test_requires_auth(self, client, project):
        response = client.post("/api/project-chat", json=_body(project["id"]))
        assert response.status_code == 401

    def test_rejects_unknown_token(self, client, project):
        response = client.post(
            "/api/project-chat",
            json=_body(project["id"]),
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    def test_missing_project_id(self, client, auth_headers, project):
        body = _body(project["id"])
        del body["projectId"]
        response = client.post("/api/project-chat", json=body, headers=auth_headers)
        assert response.status_code == 400

    def test_empty_messages(self, client, auth_headers, project):
        response = client.post("/api/project-chat", json=_body(project["id"], messages=[]), headers=auth_headers)
        assert response.status_code == 400

    def test_malformed_body(self, client, auth_headers):
        response = client.post(
            "/api/project-chat",
            content="not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_unknown_project(self, client, auth_headers, project):
        response = client.post("/api/project-chat", json=_body("missing"), headers=auth_headers)
        assert response.status_code == 404

    def test_project_of_another_user(self, client, other_headers, project):
        response = client.post(
            "/api/project-chat",
            json=_body(project["id"], userId=OTHER_USER_ID),
            headers=other_headers,
        )
        assert response.status_code == 404

    def test_user_id_mismatch(self, client, auth_headers, project):
        response = client.post(
            "/api/project-chat",
            json=_body(project["id"], userId=OTHER_USER_ID),
            headers=auth_headers,
        )
        assert response.status_code == 404

    def test_streams_content_then_done(self, client, auth_headers, project, monkeypatch):
        captured = []
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream(
            captured,
            "event: output", "data: Revenue grew", "",
            "event: output", "data:  12%.", "",
            "event: done", "data: {}", "",
        ))
        response = client.post("/api/project-chat", json=_body(project["id"]), headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        assert _events(response) == [
            {"content": "Revenue grew"},
            {"content": " 12%."},
            {"done": True},
        ]
        system_prompt = captured[0]["system_prompt"]
        assert "Quarterly Reports" in system_prompt
        assert "Revenue grew 12% in Q1." in system_prompt

    def test_client_knowledge_base_takes_precedence(self, client, auth_headers, project, monkeypatch):
        captured = []
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream(captured, '{"event": "done"}'))
        response = client.post(
            "/api/project-chat",
            json=_body(project["id"], knowledgeBase="Client supplied notes"),
            headers=auth_headers,
        )
        assert _events(response) == [{"done": True}]
        assert "Client supplied notes" in captured[0]["system_prompt"]
        assert "Revenue grew 12% in Q1." not in captured[0]["system_prompt"]

    def test_registered_documents_feed_the_stream(self, client, auth_headers, fake_db, monkeypatch):
        fresh = fake_db.seed("projects", user_id=USER_ID, name="Contracts", status="processing", extracted_text=None)
        client.post(
            f"/api/projects/{fresh['id']}/documents",
            json={"documents": [{"filename": "nda.pdf", "file_size": 512, "extracted_text": "Term is 2 years."}]},
            headers=auth_headers,
        )

        captured = []
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream(captured, '{"event": "done"}'))
        response = client.post("/api/project-chat", json=_body(fresh["id"]), headers=auth_headers)

        assert _events(response) == [{"done": True}]
        system_prompt = captured[0]["system_prompt"]
        assert "--- Document: nda.pdf ---\nTerm is 2 years." in system_prompt
        assert "No documents have been processed yet." not in system_prompt

    def test_history_is_folded_into_prompt(self, client, auth_headers, project, monkeypatch):
        captured = []
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream(captured, '{"event": "done"}'))
        messages = [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "Summarize Q1"},
        ]
        client.post("/api/project-chat", json=_body(project["id"], messages=messages), headers=auth_headers)
        assert captured[0]["prompt"] == "User: Hi\n\nAssistant: Hello!\n\nUser: Summarize Q1"

    def test_upstream_error_becomes_apology(self, client, auth_headers, project, monkeypatch):
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream(
            [], "event: output", "data: partial", "", "event: error", 'data: {"detail": "oops"}', "",
        ))
        response = client.post("/api/project-chat", json=_body(project["id"]), headers=auth_headers)

        assert response.status_code == 200
        events = _events(response)
        assert events[0] == {"content": "partial"}
        assert events[1]["content"] == APOLOGY_MESSAGE
        assert events[2] == {"done": True}
        assert len(events) == 3

    def test_session_cookie_auth(self, client, project, monkeypatch):
        monkeypatch.setattr(llm, "stream_prediction", _fake_stream([], '{"event": "done"}'))
        response = client.post(
            "/api/project-chat",
            json=_body(project["id"]),
            headers={"Cookie": "sb-access-token=token-user-1"},
        )
        assert response.status_code == 200
        assert _events(response) == [{"done": True}]


class TestDocumentQuestion:
    def test_answers_from_extracted_text(self, client, auth_headers, project, fake_db, monkeypatch):
        seen = {}

        async def fake_run(model, input_payload):
            seen.update(input_payload)
            return "  Revenue grew 12%.  "

        monkeypatch.setattr(llm, "run_prediction", fake_run)
        conversation = fake_db.seed("project_conversations", project_id=project["id"], user_id=USER_ID, title="Q1")

        response = client.post(
            f"/api/projects/{project['id']}/chat",
            json={"message": "Revenue?", "conversation_id": conversation["id"]},
            headers=auth_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"response": "Revenue grew 12%.", "projectName": "Quarterly Reports"}
        assert "Revenue grew 12% in Q1." in seen["prompt"]
        assert seen["temperature"] == 0.7
        roles = [m["role"] for m in fake_db.tables["project_messages"]]
        assert roles == ["user", "assistant"]

    def test_unprocessed_project(self, client, auth_headers, fake_db):
        pending = fake_db.seed("projects", user_id=USER_ID, name="Empty", status="processing", extracted_text=None)
        response = client.post(f"/api/projects/{pending['id']}/chat", json={"message": "Hi"}, headers=auth_headers)
        assert response.status_code == 400

    def test_model_failure_is_bad_gateway(self, client, auth_headers, project, monkeypatch):
        async def failing(model, input_payload):
            raise llm.LLMError("Replicate API error (500): upstream down")

        monkeypatch.setattr(llm, "run_prediction", failing)
        response = client.post(f"/api/projects/{project['id']}/chat", json={"message": "Hi"}, headers=auth_headers)
        assert response.status_code == 502
