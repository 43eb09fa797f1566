from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from storyflow import interview
from storyflow.app import create_app
from storyflow.interview import CLARIFYING_QUESTIONS
from storyflow.schemas import FoundationStage, Stage
from storyflow.session import WELCOME_MESSAGE


client = TestClient(create_app())


def _create_foundation(name: str = "Skyfall") -> dict:
    response = client.post("/api/foundations", json={"name": name})
    assert response.status_code == 201
    return response.json()


def _say(foundation_id: int, message: str, **extra: object) -> dict:
    response = client.post(
        f"/api/foundations/{foundation_id}/dynamic-assistant",
        json={"message": message, **extra},
    )
    assert response.status_code == 200
    return response.json()


def test_healthcheck() -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_list_stages_exposes_all() -> None:
    response = client.get("/api/stages")
    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [stage.value for stage in Stage]


def test_foundation_crud() -> None:
    created = _create_foundation()
    assert created["currentStage"] == "genre"
    assert created["genreCompleted"] is False
    assert created["threadId"] is None

    untitled = client.post("/api/foundations").json()
    assert untitled["name"] == "New Foundation"

    listed = client.get("/api/foundations").json()
    assert [item["id"] for item in listed] == [created["id"], untitled["id"]]

    updated = client.put(
        f"/api/foundations/{created['id']}",
        json={"description": "Floating isles", "genreCompleted": True},
    ).json()
    assert updated["name"] == "Skyfall"
    assert updated["description"] == "Floating isles"

    again = client.put(f"/api/foundations/{created['id']}", json={"genreCompleted": False}).json()
    assert again["genreCompleted"] is True


def test_missing_foundation_is_404() -> None:
    assert client.get("/api/foundations/999").status_code == 404
    assert client.put("/api/foundations/999", json={"name": "x"}).status_code == 404
    assert client.get("/api/foundations/999/messages").status_code == 404
    assert client.post("/api/foundations/999/dynamic-assistant", json={"message": "hi"}).status_code == 404


def test_invalid_stage_is_rejected() -> None:
    foundation = _create_foundation()

    response = client.put(f"/api/foundations/{foundation['id']}", json={"currentStage": "epilogue"})

    assert response.status_code == 422


def test_messages_are_idempotent() -> None:
    foundation = _create_foundation()
    url = f"/api/foundations/{foundation['id']}/messages"
    payload = {"role": "user", "content": "I love fantasy", "clientMessageId": "msg-1"}

    first = client.post(url, json=payload)
    second = client.post(url, json=payload)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert [item["content"] for item in client.get(url).json()] == ["I love fantasy"]


def test_messages_without_key_are_appended() -> None:
    foundation = _create_foundation()
    url = f"/api/foundations/{foundation['id']}/messages"

    client.post(url, json={"role": "user", "content": "one"})
    client.post(url, json={"role": "assistant", "content": "two"})

    assert [item["role"] for item in client.get(url).json()] == ["user", "assistant"]
    assert client.post(url, json={"role": "user", "content": ""}).status_code == 422
    assert client.post(url, json={"role": "narrator", "content": "x"}).status_code == 422


def test_delete_with_stories_needs_force() -> None:
    foundation = _create_foundation()
    story = client.post("/api/stories", json={"title": "The Fall", "foundationId": foundation["id"]}).json()

    blocked = client.delete(f"/api/foundations/{foundation['id']}")
    assert blocked.status_code == 409
    assert blocked.json()["detail"]["storyCount"] == 1

    forced = client.delete(f"/api/foundations/{foundation['id']}", params={"force": "true"})
    assert forced.status_code == 200
    assert forced.json() == {"success": True, "deletedStories": 1}
    assert client.get(f"/api/stories/{story['id']}").status_code == 404
    assert client.get(f"/api/foundations/{foundation['id']}").status_code == 404


def test_delete_cascades_messages_and_characters() -> None:
    foundation = _create_foundation()
    fid = foundation["id"]
    client.post(f"/api/foundations/{fid}/messages", json={"role": "user", "content": "hi"})
    character = client.post(f"/api/foundations/{fid}/characters", json={"name": "Mara"}).json()

    assert client.delete(f"/api/foundations/{fid}").json() == {"success": True, "deletedStories": 0}
    assert client.get(f"/api/characters/{character['id']}").status_code == 404


def test_detail_records() -> None:
    fid = _create_foundation()["id"]
    url = f"/api/foundations/{fid}/world"

    assert client.get(url).status_code == 404

    saved = client.put(url, json={"name": "Aster", "regions": ["North Reach"]})
    assert saved.status_code == 200
    client.put(url, json={"technology": "Sail and clockwork"})

    world = client.get(url).json()
    assert world["name"] == "Aster"
    assert world["regions"] == ["North Reach"]
    assert world["technology"] == "Sail and clockwork"
    assert world["foundationId"] == fid

    assert client.put(url, json={"regions": "not a list"}).status_code == 422
    assert client.get(f"/api/foundations/{fid}/plot").status_code == 422


def test_characters_crud() -> None:
    fid = _create_foundation()["id"]

    created = client.post(
        f"/api/foundations/{fid}/characters",
        json={"name": "Mara", "personality": ["Wry"]},
    )
    assert created.status_code == 201
    character_id = created.json()["id"]

    updated = client.put(f"/api/characters/{character_id}", json={"role": "Smuggler"}).json()
    assert updated["role"] == "Smuggler"
    assert updated["personality"] == ["Wry"]
    assert [item["name"] for item in client.get(f"/api/foundations/{fid}/characters").json()] == ["Mara"]

    assert client.delete(f"/api/characters/{character_id}").json() == {"success": True}
    assert client.delete(f"/api/characters/{character_id}").status_code == 404
    assert client.post(f"/api/foundations/{fid}/characters", json={"name": ""}).status_code == 422


def test_stories_and_chapters() -> None:
    assert client.post("/api/stories", json={"title": "Orphan", "foundationId": 999}).status_code == 404

    story = client.post(
        "/api/stories",
        json={"title": "The Fall", "creationProgress": '{"name": "Aster"}'},
    ).json()
    assert story["status"] == "draft"

    sid = story["id"]
    client.post("/api/chapters", json={"storyId": sid, "title": "Two", "content": "b c", "order": 2})
    first = client.post("/api/chapters", json={"storyId": sid, "title": "One", "content": "a b c", "order": 1})
    assert first.status_code == 201
    assert first.json()["wordCount"] == 3

    chapters = client.get(f"/api/stories/{sid}/chapters").json()
    assert [item["title"] for item in chapters] == ["One", "Two"]

    chapter_id = first.json()["id"]
    edited = client.put(f"/api/chapters/{chapter_id}", json={"content": "just two"}).json()
    assert edited["wordCount"] == 2

    assert client.put(f"/api/stories/{sid}", json={"status": "active"}).json()["status"] == "active"
    assert client.delete(f"/api/chapters/{chapter_id}").json() == {"success": True}
    assert client.get(f"/api/chapters/{chapter_id}").status_code == 404
    assert client.post("/api/chapters", json={"storyId": 999, "title": "Lost"}).status_code == 404

    assert client.delete(f"/api/stories/{sid}").json() == {"success": True}
    assert client.get(f"/api/stories/{sid}").status_code == 404


def test_api_key_settings_never_echo_the_key() -> None:
    status = client.get("/api/settings/api-key").json()
    assert status == {"provider": "openai", "configured": False, "source": None}

    response = client.post("/api/settings/api-key", json={"apiKey": "sk-test-123"})
    assert response.status_code == 200
    assert response.json() == {"provider": "openai", "configured": True, "source": "runtime"}
    assert "sk-test-123" not in response.text
    assert client.post("/api/settings/api-key", json={"apiKey": ""}).status_code == 422


def test_api_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ELEVENLABS_API_KEY", "eleven")

    status = client.get("/api/settings/api-key", params={"provider": "ElevenLabs"}).json()

    assert status == {"provider": "elevenlabs", "configured": True, "source": "environment"}


def test_chat_suggestions_require_both_sides() -> None:
    missing_reply = client.post("/api/ai/chat-suggestions", json={"userMessage": "hi"})
    assert missing_reply.status_code == 400
    assert missing_reply.json()["detail"] == "Missing assistant reply"

    missing_user = client.post("/api/ai/chat-suggestions", json={"assistantReply": "Which genre?"})
    assert missing_user.status_code == 400
    assert missing_user.json()["detail"] == "Missing user message"


def test_chat_suggestions_for_welcome_message() -> None:
    response = client.post("/api/ai/chat-suggestions", json={"assistantReply": WELCOME_MESSAGE})

    assert response.status_code == 200
    assert response.json() == {"suggestions": ["Fantasy", "Science fiction", "Mystery", "Romance"]}


def test_chat_suggestions_use_foundation_stage() -> None:
    fid = _create_foundation()["id"]
    client.put(f"/api/foundations/{fid}", json={"currentStage": "character"})

    response = client.post(
        "/api/ai/chat-suggestions",
        json={"userMessage": "ok", "assistantReply": "Tell me more.", "foundationId": fid},
    )

    assert response.json()["suggestions"][0] == "A hero with a mysterious past"


def test_dynamic_assistant_offline_genre_flow() -> None:
    fid = _create_foundation()["id"]

    first = _say(fid, "I love fantasy stories with magic")
    assert first["contextType"] == "genre"
    assert first["content"] == CLARIFYING_QUESTIONS[FoundationStage.GENRE]
    assert first["stageCompleted"] is False
    assert first["currentStage"] == "genre"
    thread_id = first["threadId"]

    second = _say(fid, "Dark and brooding", threadId=thread_id)
    assert second["threadId"] == thread_id
    assert second["stageCompleted"] is True
    assert second["currentStage"] == "environment"
    assert second["flags"]["genre"] is True
    assert second["content"].startswith("I've created a fantasy genre profile")

    foundation = client.get(f"/api/foundations/{fid}").json()
    assert foundation["genre"] == "Fantasy"
    assert foundation["genreCompleted"] is True
    assert foundation["currentStage"] == "environment"
    assert foundation["threadId"] == thread_id

    genre = client.get(f"/api/foundations/{fid}/genre").json()
    assert genre["mainGenre"] == "Fantasy"
    assert genre["mood"] == "Dark and brooding"

    guarded = _say(fid, "What mood and tone fits this genre?")
    assert guarded["contextType"] == "environment"


def test_dynamic_assistant_auto_transition() -> None:
    fid = _create_foundation()["id"]

    reply = _say(fid, "That sounds perfect, next stage please")

    assert reply["isAutoTransition"] is True
    assert reply["previousContextType"] == "genre"
    assert reply["contextType"] == "environment"
    assert reply["currentStage"] == "environment"
    assert reply["content"] == CLARIFYING_QUESTIONS[FoundationStage.ENVIRONMENT]


def test_dynamic_assistant_replaces_unknown_thread() -> None:
    fid = _create_foundation()["id"]

    reply = _say(fid, "Hello", threadId="thread_missing")

    assert reply["threadId"] != "thread_missing"
    assert reply["threadId"].startswith("thread_")
    assert client.get(f"/api/foundations/{fid}").json()["threadId"] == reply["threadId"]


def test_dynamic_assistant_rejects_empty_message() -> None:
    fid = _create_foundation()["id"]

    response = client.post(f"/api/foundations/{fid}/dynamic-assistant", json={"message": ""})

    assert response.status_code == 422


def test_malformed_character_json_does_not_complete(monkeypatch: pytest.MonkeyPatch) -> None:
    reply = (
        "I've created a character.\n"
        '{"name": ["Mara"], "background": "Raised on the river docks by smugglers", "personality": ["Wry"]}'
    )
    monkeypatch.setattr(interview, "converse", lambda *args, **kwargs: reply)
    fid = _create_foundation()["id"]
    client.put(f"/api/foundations/{fid}", json={"currentStage": "character", "genreCompleted": True})

    body = _say(fid, "Tell me about the keeper")

    assert body["contextType"] == "character"
    assert body["stageCompleted"] is False
    assert body["currentStage"] == "character"
    assert client.get(f"/api/foundations/{fid}/characters").json() == []


def test_rename_foundation() -> None:
    fid = _create_foundation()["id"]

    renamed = client.post(f"/api/foundations/{fid}/rename", json={"name": "  Tides of Aster "})

    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Tides of Aster"
    assert client.post(f"/api/foundations/{fid}/rename", json={"name": "   "}).status_code == 400
    assert client.post(f"/api/foundations/{fid}/rename", json={"name": ""}).status_code == 422
    assert client.post("/api/foundations/999/rename", json={"name": "x"}).status_code == 404


def test_name_suggestions_from_summary() -> None:
    fid = _create_foundation()["id"]
    summary = 'I\'ve created a noir genre profile.\n{"name": "Rain City Noir", "themes": ["Corruption"]}'

    response = client.post(
        f"/api/foundations/{fid}/name-suggestions",
        json={"genreSummary": summary, "mainGenre": "Noir"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "suggestedNames": ["Rain City Noir", "Tales of Corruption", "Chronicles of the Noir Realm"]
    }


def test_name_suggestions_fall_back_to_stored_genre() -> None:
    fid = _create_foundation()["id"]
    client.put(f"/api/foundations/{fid}/genre", json={"mainGenre": "Horror", "themes": ["Grief", "Salt"]})

    names = client.post(f"/api/foundations/{fid}/name-suggestions").json()["suggestedNames"]

    assert names == ["Tales of Grief", "Tales of Salt", "Chronicles of the Horror Realm"]
    assert client.post("/api/foundations/999/name-suggestions").status_code == 404


def test_create_character_for_foundation() -> None:
    fid = _create_foundation()["id"]

    created = client.post("/api/characters", json={"name": "Orrin", "role": "Mentor", "foundationId": fid})

    assert created.status_code == 201
    assert created.json()["foundationId"] == fid
    assert [item["name"] for item in client.get(f"/api/foundations/{fid}/characters").json()] == ["Orrin"]
    assert client.post("/api/characters", json={"name": "Ghost", "foundationId": 999}).status_code == 404
    assert client.post("/api/characters", json={"name": "Nobody"}).status_code == 422


def test_chapter_versions() -> None:
    sid = client.post("/api/stories", json={"title": "The Fall"}).json()["id"]
    chapter_id = client.post("/api/chapters", json={"storyId": sid, "title": "One", "content": "a b"}).json()["id"]

    auto = client.post("/api/versions", json={"chapterId": chapter_id, "content": "a b c", "type": "auto"})
    manual = client.post(
        "/api/versions",
        json={"chapterId": chapter_id, "content": "a b c d", "wordCount": 10, "type": "manual"},
    )

    assert auto.status_code == 201
    assert auto.json()["wordCount"] == 3
    assert manual.json()["wordCount"] == 10
    versions = client.get(f"/api/chapters/{chapter_id}/versions").json()
    assert [item["id"] for item in versions] == [manual.json()["id"], auto.json()["id"]]
    assert client.get(f"/api/versions/{auto.json()['id']}").json()["type"] == "auto"

    unknown_type = {"chapterId": chapter_id, "content": "x", "type": "draft"}
    assert client.post("/api/versions", json=unknown_type).status_code == 422
    assert client.post("/api/versions", json={"chapterId": 999, "content": "x", "type": "auto"}).status_code == 404

    client.delete(f"/api/chapters/{chapter_id}")
    assert client.get(f"/api/versions/{auto.json()['id']}").status_code == 404
    assert client.get(f"/api/chapters/{chapter_id}/versions").status_code == 404
