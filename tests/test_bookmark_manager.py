import json
import sys
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

import apply_llm_response
import bookmark_manager
from bookmark_manager import BookmarkManager
from bookmark_models import Bookmark, CreateFolder, MoveBookmarks, Proposal
from llm_client import save_proposal_file
from netscape_codec import parse


class FakeCommandClient:
    def __init__(self, actions, reply=""):
        self.actions = actions
        self.reply = reply

    def process_command(self, library, command, on_action):
        for action in self.actions:
            on_action(action)
        return self.reply


@pytest.fixture
def manager(sample_html_file):
    manager = BookmarkManager(str(sample_html_file))
    manager.load_library()
    return manager


def test_load_library(manager):
    assert len(manager.library.bookmarks) == 3
    assert [f.name for f in manager.library.folders] == ["Dev", "Python", "Empty"]


def test_save_library(manager, tmp_path):
    output = tmp_path / "out.html"
    manager.save_library(str(output))

    saved = parse(output.read_text(encoding="utf-8"))
    assert [b.title for b in saved.bookmarks] == ["GitHub", "Python Docs", "News"]


def test_remove_duplicates(manager):
    manager.library.bookmarks.append(Bookmark(id="dup", title="GitHub again", url="HTTPS://GITHUB.COM/"))

    assert len(manager.find_duplicates()) == 1
    assert manager.remove_duplicates() == 1
    assert manager.remove_duplicates() == 0
    assert "dup" not in [b.id for b in manager.library.bookmarks]


def test_apply_proposal_keeps_previous(manager):
    github = manager.library.bookmarks[0]
    previous_library = manager.library
    proposal = Proposal.from_dict({
        "folders": [{"path": "Code", "description": ""}],
        "assignments": [{"bookmarkId": github.id, "folderPath": "Code"}],
    })

    previous = manager.apply_proposal(proposal)

    assert previous is previous_library
    assert [f.name for f in manager.library.folders] == ["Code"]
    assert manager.library.bookmarks[0].folder == manager.library.folders[0].id
    assert previous.bookmarks[0].folder != manager.library.folders[0].id


def test_run_command(manager, capsys):
    news = manager.library.bookmarks[2]
    client = FakeCommandClient(
        [CreateFolder("Reading"), MoveBookmarks((news.id,), "Reading"), MoveBookmarks(("ghost",), "")],
        reply="Filed it.",
    )

    batch = manager.run_command("file the news", llm_client=client)

    reading = batch.session_created["Reading"]
    assert manager.library.get_bookmark(news.id).folder == reading
    assert manager.library.get_folder(reading).name == "Reading"
    out = capsys.readouterr().out
    assert "[SYSTEM] Created folder: Reading" in out
    assert "[SYSTEM] Moved 1 items to folder" in out
    assert "Move target folder is empty" in out
    assert "AI: Filed it." in out


def test_validate_links(manager, monkeypatch):
    monkeypatch.setattr(bookmark_manager.time, "sleep", lambda seconds: None)

    def head(url, timeout, allow_redirects):
        if "github" in url:
            return SimpleNamespace(status_code=200, url=url)
        if "python" in url:
            return SimpleNamespace(status_code=404, url=url)
        raise requests.ConnectionError("no route to host")

    manager.session = MagicMock()
    manager.session.head.side_effect = head

    results = manager.validate_links(manager.library.bookmarks)

    assert [r["is_valid"] for r in results] == [True, False, False]
    assert results[1]["status_code"] == 404
    assert "no route to host" in results[2]["error"]
    with open(manager.cache_file, encoding="utf-8") as f:
        assert len(json.load(f)["link_validation"]) == 3

    # Second run is served from the cache
    manager.session.head.reset_mock()
    again = manager.validate_links(manager.library.bookmarks)
    manager.session.head.assert_not_called()
    assert [r["is_valid"] for r in again] == [True, False, False]


def test_cache_is_reloaded(manager, sample_html_file):
    manager.cache["link_validation"]["https://x.example/"] = {"is_valid": True, "status_code": 200}
    manager.save_cache()

    assert "https://x.example/" in BookmarkManager(str(sample_html_file)).cache["link_validation"]


def test_main_applies_saved_proposal(manager, sample_html_file, tmp_path, monkeypatch, capsys):
    news = manager.library.bookmarks[2]
    proposal_file = tmp_path / "proposal.json"
    save_proposal_file(str(proposal_file), Proposal.from_dict({
        "folders": [{"path": "Reading/News", "description": ""}],
        "assignments": [{"bookmarkId": news.id, "folderPath": "Reading/News"}],
    }), manager.library)
    output = tmp_path / "organized.html"

    monkeypatch.setattr(sys, "argv", [
        "bookmark_manager", str(sample_html_file), "--apply-llm-json", str(proposal_file),
        "--yes", "--alphabetize", "-o", str(output),
    ])
    bookmark_manager.main()

    saved = parse(output.read_text(encoding="utf-8"))
    assert sorted(saved.folder_path(f.id) for f in saved.folders) == ["Reading", "Reading/News"]
    filed = [b for b in saved.bookmarks if b.title == "News"][0]
    assert saved.folder_path(filed.folder) == "Reading/News"
    assert "2 bookmarks were not assigned by the proposal" in capsys.readouterr().out


def test_main_removes_duplicates_from_snapshot(tmp_path, monkeypatch):
    html_file = tmp_path / "dupes.html"
    html_file.write_text(
        '<DL><p>\n'
        '    <DT><A HREF="https://a.example/">A</A>\n'
        '    <DT><A HREF="https://a.example/">A copy</A>\n'
        '</DL><p>\n',
        encoding="utf-8",
    )
    snapshot = parse(html_file.read_text(encoding="utf-8"))
    proposal_file = tmp_path / "proposal.json"
    save_proposal_file(str(proposal_file), Proposal.from_dict({
        "folders": ["Keep"],
        "assignments": [{"bookmarkId": b.id, "folderPath": "Keep"} for b in snapshot.bookmarks],
    }), snapshot)
    output = tmp_path / "organized.html"

    monkeypatch.setattr(sys, "argv", [
        "bookmark_manager", str(html_file), "--remove-duplicates", "--apply-llm-json", str(proposal_file),
        "--yes", "-o", str(output),
    ])
    bookmark_manager.main()

    saved = parse(output.read_text(encoding="utf-8"))
    assert [b.title for b in saved.bookmarks] == ["A"]
    assert saved.folder_path(saved.bookmarks[0].folder) == "Keep"


def test_main_declined_proposal_writes_nothing(manager, sample_html_file, tmp_path, monkeypatch):
    proposal_file = tmp_path / "proposal.json"
    save_proposal_file(str(proposal_file), Proposal.from_dict({"folders": ["X"]}), manager.library)
    output = tmp_path / "organized.html"

    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    monkeypatch.setattr(sys, "argv", [
        "bookmark_manager", str(sample_html_file), "--apply-llm-json", str(proposal_file), "-o", str(output),
    ])
    bookmark_manager.main()

    assert not output.exists()


def test_main_bad_proposal_file_exits(sample_html_file, tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", [
        "bookmark_manager", str(sample_html_file), "--apply-llm-json", str(tmp_path / "missing.json"),
    ])

    with pytest.raises(SystemExit) as excinfo:
        bookmark_manager.main()
    assert excinfo.value.code == 1


def test_apply_llm_response_script(manager, sample_html_file, tmp_path, monkeypatch):
    github = manager.library.bookmarks[0]
    manager.library.bookmarks.append(Bookmark(id="dup", title="GitHub copy", url="https://github.com/"))
    proposal_file = tmp_path / "proposal.json"
    save_proposal_file(str(proposal_file), Proposal.from_dict({
        "folders": ["Code"],
        "assignments": [{"bookmarkId": github.id, "folderPath": "Code"}],
    }), manager.library)
    output = tmp_path / "applied.html"

    monkeypatch.setattr(sys, "argv", ["apply_llm_response.py", str(sample_html_file), str(proposal_file), str(output)])
    apply_llm_response.main()

    saved = parse(output.read_text(encoding="utf-8"))
    assert [f.name for f in saved.folders] == ["Code"]
    assert [b.title for b in saved.bookmarks if b.folder is not None] == ["GitHub"]
    assert "GitHub copy" not in [b.title for b in saved.bookmarks]


def test_apply_llm_response_usage(monkeypatch):
    monkeypatch.setattr(sys, "argv", ["apply_llm_response.py"])
    with pytest.raises(SystemExit):
        apply_llm_response.main()
