"""
Netscape bookmark file (bookmarks.html) reader and writer
"""

import html
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from bookmark_models import Bookmark, Folder, Library, new_id, unique_tags

logger = logging.getLogger(__name__)

HTML_HEADER = """<!DOCTYPE NETSCAPE-Bookmark-file-1>
<!-- This is an automatically generated file.
     It will be read and overwritten.
     DO NOT EDIT! -->
<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">
<TITLE>Bookmarks</TITLE>
<H1>Bookmarks</H1>
<DL><p>
"""

INDENT = "    "


def escape_html(value: str) -> str:
    """Escape the five HTML-significant characters"""
    return html.escape(value, quote=True).replace("&#x27;", "&#039;")


def _bookmark_from_anchor(anchor: Tag, folder_id: Optional[str]) -> Bookmark:
    tags = anchor.get('tags')
    return Bookmark(
        id=new_id(),
        title=anchor.get_text() or "Untitled",
        url=anchor.get('href') or "",
        add_date=anchor.get('add_date') or None,
        icon=anchor.get('icon') or None,
        tags=unique_tags(tags.split(',')) if tags else [],
        folder=folder_id,
    )


def _walk_list(dl: Tag, folder_id: Optional[str], bookmarks: List[Bookmark], folders: List[Folder]):
    """Collect the entries of one <DL>, recursing into sub-folders in document order"""
    for dt in dl.find_all('dt'):
        # Unclosed <DT>/<p> tags make later entries children of earlier ones,
        # so membership is decided by the nearest enclosing list.
        if dt.find_parent('dl') is not dl:
            continue

        anchor = dt.find('a', recursive=False)
        if anchor is not None:
            bookmarks.append(_bookmark_from_anchor(anchor, folder_id))

        heading = dt.find('h3', recursive=False)
        if heading is not None:
            folder = Folder(id=new_id(), name=heading.get_text() or "New Folder", parent_id=folder_id)
            folders.append(folder)
            sub_list = heading.find_next_sibling('dl')
            if sub_list is not None:
                _walk_list(sub_list, folder.id, bookmarks, folders)


def parse(html_text: str) -> Library:
    """Parse a Netscape bookmark document into a Library with fresh ids"""
    soup = BeautifulSoup(html_text, "html.parser")
    bookmarks = []
    folders = []

    root_list = soup.find('dl')
    if root_list is not None:
        _walk_list(root_list, None, bookmarks, folders)
    else:
        # No list structure: keep every link, flat at the root
        for anchor in soup.find_all('a'):
            bookmarks.append(_bookmark_from_anchor(anchor, None))

    logger.info("Parsed %d bookmarks in %d folders", len(bookmarks), len(folders))
    return Library(bookmarks=bookmarks, folders=folders)


def _render_bookmark(bookmark: Bookmark, indent: str) -> str:
    attrs = f' HREF="{escape_html(bookmark.url)}"'
    if bookmark.add_date:
        attrs += f' ADD_DATE="{escape_html(bookmark.add_date)}"'
    if bookmark.icon:
        attrs += f' ICON="{escape_html(bookmark.icon)}"'
    if bookmark.tags:
        attrs += f' TAGS="{escape_html(",".join(bookmark.tags))}"'
    return f"{indent}<DT><A{attrs}>{escape_html(bookmark.title)}</A>\n"


def serialize(library: Library) -> str:
    """Render a Library as a Netscape bookmark document"""
    parts = [HTML_HEADER]
    rendered_folders = set()
    rendered_bookmarks = 0

    def render_level(parent_id: Optional[str], depth: int):
        nonlocal rendered_bookmarks
        indent = INDENT * depth

        for folder in library.child_folders(parent_id):
            rendered_folders.add(folder.id)
            parts.append(f"{indent}<DT><H3>{escape_html(folder.name)}</H3>\n")
            parts.append(f"{indent}<DL><p>\n")
            render_level(folder.id, depth + 1)
            parts.append(f"{indent}</DL><p>\n")

        for bookmark in library.bookmarks_in(parent_id):
            parts.append(_render_bookmark(bookmark, indent))
            rendered_bookmarks += 1

    render_level(None, 1)
    parts.append("</DL><p>")

    skipped_folders = len(library.folders) - len(rendered_folders)
    skipped_bookmarks = len(library.bookmarks) - rendered_bookmarks
    if skipped_folders or skipped_bookmarks:
        logger.warning(
            "Export skipped %d folders and %d bookmarks that reference missing folders",
            skipped_folders, skipped_bookmarks,
        )

    return "".join(parts)
