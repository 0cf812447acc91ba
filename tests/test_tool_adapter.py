"""
Tests for the tool-call Note Store adapter

Tests result parsing, directory listing parsing and error mapping.
"""

import asyncio
import json
import pytest
from pathlib import Path
from unittest.mock import Mock
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from brain.core.errors import NoteNotFoundError, NoteReadError
from brain.notes.tool_adapter import (
    ToolNoteStore, NoteStoreResult, parse_directory_listing, parse_search_response
)


def text_result(text, is_error=False):
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


LISTING = """Contents of '/' (depth 10):

📁 features
  📄 login.md features/login.md | Login | 2025-01-02
  📄 auth-design.md features/auth-design.md | Auth Design | 2025-01-03
📁 design
  📄 token-flow.md design/token-flow.md | Token Flow | 2025-01-04
  📄 login.md features/login.md | Login | 2025-01-02

Total: 3 files
"""


class FakeToolCaller:
    """Records tool calls and replays canned results."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, name, arguments):
        self.calls.append((name, dict(arguments)))
        response = self.responses[name]
        if isinstance(response, Exception):
            raise response
        return response


class TestParsing:
    """Tests for the parsing helpers."""

    def test_result_first_text_block(self):
        raw = {"content": [{"type": "image", "data": "..."}, {"type": "text", "text": "hello"}]}

        result = NoteStoreResult.parse(raw)

        assert result.text == "hello"
        assert result.is_error is False

    def test_result_error_flag(self):
        assert NoteStoreResult.parse(text_result("boom", is_error=True)).is_error is True

    def test_result_without_text(self):
        assert NoteStoreResult.parse({"content": []}).text is None
        assert NoteStoreResult.parse("garbage").is_error is True

    def test_result_from_model(self):
        model = Mock()
        model.model_dump.return_value = text_result("from model")

        assert NoteStoreResult.parse(model).text == "from model"

    def test_directory_listing(self):
        assert parse_directory_listing(LISTING) == [
            "features/login", "features/auth-design", "design/token-flow"
        ]

    def test_search_response(self):
        body = json.dumps({"results": [
            {"permalink": "features/login", "title": "Login", "content": "x" * 300, "score": 0.8},
            {"title": "No permalink"},
        ]})

        hits = parse_search_response(body)

        assert hits[0].entity_id == "features/login"
        assert len(hits[0].content_snippet) == 200
        assert hits[0].score == 0.8
        assert hits[1].entity_id == ""
        assert hits[1].score is None

    def test_search_response_invalid_json(self):
        assert parse_search_response("not json") == []


class TestToolNoteStore:
    """Tests for ToolNoteStore operations."""

    def test_list_notes(self):
        caller = FakeToolCaller({"list_directory": text_result(LISTING)})
        store = ToolNoteStore(caller)

        ids = asyncio.run(store.list_notes(project="brain"))

        assert len(ids) == 3
        assert caller.calls == [("list_directory", {"depth": 10, "project": "brain"})]

    def test_list_notes_error(self):
        caller = FakeToolCaller({"list_directory": text_result("boom", is_error=True)})

        assert asyncio.run(ToolNoteStore(caller).list_notes()) == []

    def test_read_note(self):
        caller = FakeToolCaller({"read_note": text_result("# Login\nbody")})
        store = ToolNoteStore(caller)

        note = asyncio.run(store.read_note("features/login"))

        assert note.content == "# Login\nbody"
        assert note.title == "Login"
        assert caller.calls == [("read_note", {"identifier": "features/login"})]

    def test_read_not_found(self):
        caller = FakeToolCaller({"read_note": text_result("Note not found: x", is_error=True)})

        with pytest.raises(NoteNotFoundError):
            asyncio.run(ToolNoteStore(caller).read_note("x"))

    def test_read_other_error(self):
        caller = FakeToolCaller({"read_note": text_result("permission denied", is_error=True)})

        with pytest.raises(NoteReadError):
            asyncio.run(ToolNoteStore(caller).read_note("x"))

    def test_read_transport_failure(self):
        caller = FakeToolCaller({"read_note": ConnectionError("pipe closed")})

        with pytest.raises(NoteReadError):
            asyncio.run(ToolNoteStore(caller).read_note("x"))

    def test_read_without_text(self):
        caller = FakeToolCaller({"read_note": {"content": []}})

        with pytest.raises(NoteReadError):
            asyncio.run(ToolNoteStore(caller).read_note("x"))

    def test_keyword_search(self):
        body = json.dumps({"results": [{"permalink": "a", "title": "A", "content": "c", "score": 0.5}]})
        caller = FakeToolCaller({"search_notes": text_result(body)})
        store = ToolNoteStore(caller)

        hits = asyncio.run(store.keyword_search('"A"', page_size=1, project="p"))

        assert [h.entity_id for h in hits] == ["a"]
        assert caller.calls == [("search_notes", {"query": '"A"', "page_size": 1, "project": "p"})]

    def test_does_not_notify(self):
        assert ToolNoteStore(FakeToolCaller({})).on_note_changed(lambda e, c: None) is False
