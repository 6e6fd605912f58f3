import json
import logging
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

import llm_client
from bookmark_models import Bookmark, CreateFolder, Library, MoveBookmarks, Proposal
from llm_client import LLMClient, create_llm_client, load_proposal_file, progress_indicator, save_proposal_file
from llm_templates import LLMConfig
from reconciler import ActionBatch

PROPOSAL_JSON = {
    "folders": [{"path": "Dev/Python", "description": "Python docs"}],
    "assignments": [{"bookmarkId": "b1", "folderPath": "Dev/Python"}],
    "reasoning": "by topic",
}


@pytest.fixture
def small_library():
    return Library(bookmarks=[
        Bookmark(id="b1", title="Python Docs", url="https://docs.python.org/3/"),
        Bookmark(id="b2", title="GitHub", url="https://github.com/"),
    ])


def make_client(provider, fake):
    config = LLMConfig(provider=provider, model="test-model", api_key="key")
    return LLMClient(config, client=fake, logger=logging.getLogger("test_llm_client"), show_progress=False)


def openai_response(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20),
    )


def openai_tool_call(name, arguments):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return SimpleNamespace(function=SimpleNamespace(name=name, arguments=arguments))


def anthropic_response(*blocks):
    return SimpleNamespace(content=list(blocks), usage=SimpleNamespace(input_tokens=10, output_tokens=20))


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_use_block(name, payload):
    return SimpleNamespace(type="tool_use", name=name, input=payload)


class TestSuggestStructure:
    def test_openai(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response(json.dumps(PROPOSAL_JSON))

        proposal = make_client("openai", fake).suggest_structure(small_library, "keep it flat")

        assert proposal == Proposal.from_dict(PROPOSAL_JSON)
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"]["type"] == "json_schema"
        prompt = kwargs["messages"][1]["content"]
        assert '"id": "b1"' in prompt
        assert "docs.python.org" in prompt
        assert "User Refinement Request: keep it flat" in prompt

    def test_anthropic_fenced_json(self, small_library):
        fake = MagicMock()
        fake.messages.create.return_value = anthropic_response(
            text_block("Here is the structure:\n```json\n" + json.dumps(PROPOSAL_JSON) + "\n```\nEnjoy!"))

        proposal = make_client("anthropic", fake).suggest_structure(small_library)

        assert [f.path for f in proposal.folders] == ["Dev/Python"]
        assert fake.messages.create.call_args.kwargs["max_tokens"] == 2000

    def test_raw_output_skips_parsing(self, small_library, tmp_path):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response("not json at all")
        raw_file = tmp_path / "raw.json"
        client = make_client("openai", fake)
        client.output_raw_response = True
        client.raw_output_file = str(raw_file)

        assert client.suggest_structure(small_library) is None
        assert raw_file.read_text(encoding="utf-8") == "not json at all"

    def test_unparseable_response(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response("I cannot help with that.")

        with pytest.raises(ValueError):
            make_client("openai", fake).suggest_structure(small_library)

    def test_transport_error_propagates(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.side_effect = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            make_client("openai", fake).suggest_structure(small_library)


class TestParseResponse:
    @pytest.fixture
    def client(self):
        return make_client("openai", MagicMock())

    def test_bare_json_with_prose(self, client):
        assert client._parse_llm_response('Sure! {"folders": []} Hope this helps') == {"folders": []}

    def test_trailing_commas_repaired(self, client):
        content = '{"folders": [{"path": "A", "description": "x"},], "assignments": [],}'
        assert client._parse_llm_response(content)["folders"] == [{"path": "A", "description": "x"}]

    def test_missing_commas_between_lines(self, client):
        content = '{\n"reasoning": "a"\n"folders": []\n}'
        assert client._parse_llm_response(content) == {"reasoning": "a", "folders": []}

    def test_truncated(self, client):
        with pytest.raises(ValueError):
            client._parse_llm_response('```json\n{"folders": [{"path": "A"\n```')

    def test_non_object(self, client):
        with pytest.raises(ValueError):
            client._parse_llm_response('```json\n["a", "b"]\n```')


class TestProcessCommand:
    def test_openai_tool_calls_in_order(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response(
            "Done.",
            [
                openai_tool_call("create_folder", {"name": "Python"}),
                openai_tool_call("search_web_context", {"query": "python"}),
                openai_tool_call("move_bookmarks", {"bookmarkIds": ["b1"], "targetFolderId": "Python"}),
            ],
        )
        received = []

        reply = make_client("openai", fake).process_command(small_library, "file python links", received.append)

        assert reply == "Done."
        assert received == [CreateFolder("Python"), MoveBookmarks(("b1",), "Python")]
        kwargs = fake.chat.completions.create.call_args.kwargs
        assert [t["function"]["name"] for t in kwargs["tools"]] == ["move_bookmarks", "create_folder"]
        assert "Python Docs" in kwargs["messages"][0]["content"]

    def test_malformed_arguments_skipped(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response(
            None,
            [
                openai_tool_call("move_bookmarks", "{not json"),
                openai_tool_call("create_folder", {"name": "Later"}),
            ],
        )
        received = []

        reply = make_client("openai", fake).process_command(small_library, "go", received.append)

        assert reply == ""
        assert received == [CreateFolder("Later")]

    def test_no_tool_calls(self, small_library):
        fake = MagicMock()
        fake.chat.completions.create.return_value = openai_response("Nothing to do.", None)
        received = []

        assert make_client("openai", fake).process_command(small_library, "hi", received.append) == "Nothing to do."
        assert received == []

    def test_anthropic_tool_use(self, small_library):
        fake = MagicMock()
        fake.messages.create.return_value = anthropic_response(
            text_block("Creating a folder."),
            tool_use_block("create_folder", {"name": "Code"}),
            tool_use_block("move_bookmarks", {"bookmarkIds": ["b2"], "targetFolderId": "Code"}),
            text_block("All set."),
        )
        received = []

        reply = make_client("anthropic", fake).process_command(small_library, "sort", received.append)

        assert reply == "Creating a folder.\nAll set."
        assert received == [CreateFolder("Code"), MoveBookmarks(("b2",), "Code")]
        assert [t["name"] for t in fake.messages.create.call_args.kwargs["tools"]] == ["move_bookmarks", "create_folder"]

    def test_create_then_move_through_batch(self, small_library):
        fake = MagicMock()
        fake.messages.create.return_value = anthropic_response(
            tool_use_block("create_folder", {"name": "Dev"}),
            tool_use_block("move_bookmarks", {"bookmarkIds": ["b1", "b2"], "targetFolderId": "Dev"}),
        )
        batch = ActionBatch(small_library)

        make_client("anthropic", fake).process_command(small_library, "put everything in Dev", batch)

        dev = batch.session_created["Dev"]
        assert [b.folder for b in batch.library.bookmarks] == [dev, dev]
        assert batch.warnings == []

    def test_transport_error_propagates(self, small_library):
        fake = MagicMock()
        fake.messages.create.side_effect = RuntimeError("overloaded")
        received = []

        with pytest.raises(RuntimeError):
            make_client("anthropic", fake).process_command(small_library, "sort", received.append)
        assert received == []


class TestProposalFiles:
    def test_save_and_load_with_snapshot(self, small_library, tmp_path):
        path = tmp_path / "proposal.json"
        proposal = Proposal.from_dict(PROPOSAL_JSON)

        save_proposal_file(str(path), proposal, small_library)
        loaded, snapshot = load_proposal_file(str(path))

        assert loaded == proposal
        assert snapshot == small_library

    def test_bare_proposal(self, tmp_path):
        path = tmp_path / "raw.json"
        path.write_text(json.dumps(PROPOSAL_JSON), encoding="utf-8")

        loaded, snapshot = load_proposal_file(str(path))

        assert loaded.assignments[0].bookmark_id == "b1"
        assert snapshot is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_proposal_file(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")
        with pytest.raises(ValueError):
            load_proposal_file(str(path))


def test_unsupported_provider():
    with pytest.raises(ValueError):
        LLMClient(LLMConfig(provider="gemini"), client=MagicMock(), logger=logging.getLogger("test_llm_client"))


def test_create_llm_client_requires_key(monkeypatch):
    monkeypatch.setenv("BOOKMARK_LLM_PROVIDER", "openai")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        create_llm_client()


def test_spinner_stops_before_line_is_cleared(monkeypatch, capsys):
    real_sleep = time.sleep
    monkeypatch.setattr(llm_client.time, "sleep", lambda seconds: real_sleep(0.001))
    threads_before = threading.active_count()

    with progress_indicator(True):
        real_sleep(0.01)

    assert threading.active_count() == threads_before
    out = capsys.readouterr().out
    assert "Waiting for LLM response" in out
    assert out.endswith("\r" + " " * 50 + "\r")
