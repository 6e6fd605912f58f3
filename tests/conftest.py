import json

import pytest

from bookmark_models import Bookmark, Folder, Library

SAMPLE_HTML = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
    <DT><H3 ADD_DATE="1600000000">Dev</H3>
    <DL><p>
        <DT><A HREF="https://github.com/" ADD_DATE="1600000001" ICON="data:image/png;base64,AAA=">GitHub</A>
        <DT><H3>Python</H3>
        <DL><p>
            <DT><A HREF="https://docs.python.org/" TAGS="python,docs">Python Docs</A>
        </DL><p>
    </DL><p>
    <DT><H3>Empty</H3>
    <DL><p>
    </DL><p>
    <DT><A HREF="https://news.example.com/">News</A>
</DL><p>
"""

CHROME_BOOKMARKS = {
    "checksum": "0123456789abcdef",
    "roots": {
        "bookmark_bar": {
            "children": [
                {
                    "children": [
                        {"date_added": "13300000000000000", "id": "5", "name": "GitHub", "type": "url", "url": "https://github.com/"}
                    ],
                    "date_added": "13300000000000000",
                    "id": "4",
                    "name": "Dev",
                    "type": "folder"
                },
                {"date_added": "13300000000000001", "id": "6", "name": "Hacker News", "type": "url", "url": "https://news.ycombinator.com/"}
            ],
            "date_added": "13300000000000000",
            "id": "1",
            "name": "Bookmarks bar",
            "type": "folder"
        },
        "other": {
            "children": [
                {"children": [], "date_added": "13300000000000000", "id": "7", "name": "Dev", "type": "folder"}
            ],
            "date_added": "13300000000000000",
            "id": "2",
            "name": "Other bookmarks",
            "type": "folder"
        },
        "synced": {
            "children": [],
            "date_added": "13300000000000000",
            "id": "3",
            "name": "Mobile bookmarks",
            "type": "folder"
        }
    },
    "version": 1
}


@pytest.fixture
def sample_html():
    return SAMPLE_HTML


@pytest.fixture
def sample_html_file(tmp_path):
    path = tmp_path / "bookmarks.html"
    path.write_text(SAMPLE_HTML, encoding="utf-8")
    return path


@pytest.fixture
def chrome_bookmarks_file(tmp_path):
    path = tmp_path / "Bookmarks"
    path.write_text(json.dumps(CHROME_BOOKMARKS), encoding="utf-8")
    return path


@pytest.fixture
def library():
    """Two folders named Dev, one of them under Work, and three bookmarks"""
    return Library(
        bookmarks=[
            Bookmark(id="b1", title="GitHub", url="https://github.com/", folder="old"),
            Bookmark(id="b2", title="MDN", url="https://developer.mozilla.org/", folder="old"),
            Bookmark(id="b3", title="News", url="https://news.example.com/"),
        ],
        folders=[
            Folder(id="old", name="OldFolder"),
            Folder(id="work", name="Work"),
            Folder(id="dev-nested", name="Dev", parent_id="work"),
            Folder(id="dev-root", name="Dev"),
        ],
    )
