"""Tests for Cornell notes CRUD, filters and cue suggestions."""

import json
import uuid

from httpx import AsyncClient
from langchain_core.language_models import FakeListChatModel

from besttutor.ai.flows.note_cues import FALLBACK_CUES

NOTES_URL = "/api/v1/notes"


async def _create(client: AsyncClient, headers, **overrides):
    payload = {
        "subject": "science",
        "topic": "Photosynthesis",
        "cue_column": ["What do plants need?"],
        "note_body": "Plants use sunlight, water and carbon dioxide.",
        "summary": "Plants make glucose from light.",
        "tags": ["Biology", "exam", "biology"],
        **overrides,
    }
    response = await client.post(NOTES_URL, json=payload, headers=headers)
    assert response.status_code == 201
    return response.json()


class TestCrud:
    async def test_create_and_get(self, client: AsyncClient, student_headers):
        note = await _create(client, student_headers)
        assert note["tags"] == ["biology", "exam"]
        assert note["cue_column"] == ["What do plants need?"]

        response = await client.get(f"{NOTES_URL}/{note['id']}", headers=student_headers)
        assert response.status_code == 200
        assert response.json()["topic"] == "Photosynthesis"

    async def test_partial_update(self, client: AsyncClient, student_headers):
        note = await _create(client, student_headers)
        response = await client.patch(
            f"{NOTES_URL}/{note['id']}",
            json={"summary": "Light becomes chemical energy.", "tags": ["Review"]},
            headers=student_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["summary"] == "Light becomes chemical energy."
        assert data["tags"] == ["review"]
        assert data["topic"] == "Photosynthesis"

    async def test_delete(self, client: AsyncClient, student_headers):
        note = await _create(client, student_headers)
        response = await client.delete(f"{NOTES_URL}/{note['id']}", headers=student_headers)
        assert response.status_code == 204
        response = await client.get(f"{NOTES_URL}/{note['id']}", headers=student_headers)
        assert response.status_code == 404

    async def test_notes_are_private(self, client: AsyncClient, student_headers, premium_headers):
        note = await _create(client, student_headers)
        for method in ("get", "delete"):
            response = await getattr(client, method)(f"{NOTES_URL}/{note['id']}", headers=premium_headers)
            assert response.status_code == 404
        response = await client.patch(f"{NOTES_URL}/{note['id']}", json={"summary": "x"}, headers=premium_headers)
        assert response.status_code == 404

    async def test_unknown_note(self, client: AsyncClient, student_headers):
        response = await client.get(f"{NOTES_URL}/{uuid.uuid4()}", headers=student_headers)
        assert response.status_code == 404


class TestList:
    async def test_filters_and_pagination(self, client: AsyncClient, student_headers, premium_headers):
        await _create(client, student_headers)
        await _create(
            client,
            student_headers,
            subject="math",
            topic="Fractions",
            note_body="Common denominators",
            tags=["homework"],
        )
        await _create(client, student_headers, subject="math", topic="Decimals", note_body="Place value", tags=[])
        await _create(client, premium_headers, subject="math", topic="Not mine")

        everything = (await client.get(NOTES_URL, headers=student_headers)).json()
        assert everything["total"] == 3

        math = (await client.get(NOTES_URL, params={"subject": "math"}, headers=student_headers)).json()
        assert {n["topic"] for n in math["items"]} == {"Fractions", "Decimals"}

        tagged = (await client.get(NOTES_URL, params={"tag": "HOMEWORK"}, headers=student_headers)).json()
        assert [n["topic"] for n in tagged["items"]] == ["Fractions"]

        searched = (await client.get(NOTES_URL, params={"search": "denominator"}, headers=student_headers)).json()
        assert [n["topic"] for n in searched["items"]] == ["Fractions"]

        page = (await client.get(NOTES_URL, params={"limit": 2, "offset": 2}, headers=student_headers)).json()
        assert page["total"] == 3
        assert len(page["items"]) == 1


class TestSuggestCues:
    async def test_suggest_cues(self, client: AsyncClient, app_context, student_headers):
        app_context.llm = FakeListChatModel(responses=[json.dumps({"cues": ["Why do leaves look green?"]})])
        response = await client.post(
            f"{NOTES_URL}/suggest-cues",
            json={"topic": "Photosynthesis", "note_body": "Chlorophyll absorbs light."},
            headers=student_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"cues": ["Why do leaves look green?"]}

    async def test_invalid_model_output_falls_back(self, client: AsyncClient, app_context, student_headers):
        app_context.llm = FakeListChatModel(responses=["I'd rather not."])
        response = await client.post(f"{NOTES_URL}/suggest-cues", json={"topic": "Volcanoes"}, headers=student_headers)
        assert response.status_code == 200
        assert response.json()["cues"] == FALLBACK_CUES
