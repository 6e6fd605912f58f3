"""
Apply LLM proposals and incremental actions to a bookmark Library.

Every function here takes a Library and returns a new one; the input Library
is never modified.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from bookmark_models import (
    Action, Bookmark, CreateFolder, Folder, Library, MoveBookmarks, Proposal,
    new_id,
)
from path_resolver import resolve_folder_paths

logger = logging.getLogger(__name__)


# ============== Full proposals ==============

def apply_proposal(library: Library, proposal: Proposal) -> Library:
    """Replace the folder tree with the proposal's and reassign bookmarks"""
    new_folders, path_to_id = resolve_folder_paths(f.path for f in proposal.folders)

    bookmarks = list(library.bookmarks)
    index_by_id = {}
    for index, bookmark in enumerate(bookmarks):
        index_by_id.setdefault(bookmark.id, index)

    skipped = 0
    for assignment in proposal.assignments:
        folder_id = path_to_id.get(assignment.folder_path)
        if folder_id is None:
            logger.warning("Skipping assignment of %s: unknown folder path '%s'",
                           assignment.bookmark_id, assignment.folder_path)
            skipped += 1
            continue
        index = index_by_id.get(assignment.bookmark_id)
        if index is None:
            logger.warning("Skipping assignment to '%s': unknown bookmark %s",
                           assignment.folder_path, assignment.bookmark_id)
            skipped += 1
            continue
        bookmarks[index] = dataclasses.replace(bookmarks[index], folder=folder_id)

    logger.info("Applied proposal: %d folders, %d assignments, %d skipped",
                len(new_folders), len(proposal.assignments) - skipped, skipped)
    # Bookmarks left out of the proposal keep their old folder id even though
    # that folder no longer exists.
    return Library(bookmarks=bookmarks, folders=new_folders)


# ============== Name resolution ==============

def build_folder_name_index(folders: List[Folder]) -> Dict[str, List[str]]:
    """Map folder names to ids in pre-order traversal of the folder tree"""
    children = {}
    known_ids = {f.id for f in folders}
    for folder in folders:
        parent = folder.parent_id if folder.parent_id in known_ids else None
        children.setdefault(parent, []).append(folder)

    index = {}
    visited = set()

    def visit(parent_id: Optional[str]):
        for folder in children.get(parent_id, []):
            if folder.id in visited:
                continue
            visited.add(folder.id)
            index.setdefault(folder.name, []).append(folder.id)
            visit(folder.id)

    visit(None)

    # Folders caught in a parent cycle are never reached from the root
    for folder in folders:
        if folder.id not in visited:
            visited.add(folder.id)
            index.setdefault(folder.name, []).append(folder.id)

    return index


def resolve_folder_reference(reference: Optional[str],
                             folder_name_index: Dict[str, List[str]],
                             session_created: Dict[str, str]) -> Tuple[Optional[str], List[str]]:
    """
    Resolve a folder id, folder name, or name of a folder created in this batch.

    Returns the folder id (None when the reference is empty) and any warnings.
    Unknown names are assumed to already be folder ids.
    """
    if not reference:
        return None, ["Move target folder is empty"]

    if reference in session_created:
        return session_created[reference], []

    ids = folder_name_index.get(reference)
    if ids:
        if len(ids) > 1:
            return ids[0], [f"Folder name '{reference}' is ambiguous ({len(ids)} folders), using {ids[0]}"]
        return ids[0], []

    return reference, []


# ============== Incremental actions ==============

@dataclass
class ActionResult:
    library: Library
    warnings: List[str] = field(default_factory=list)
    created_folder: Optional[Folder] = None
    target_folder_id: Optional[str] = None
    moved_ids: List[str] = field(default_factory=list)


def apply_action(library: Library, action: Action,
                 folder_name_index: Dict[str, List[str]],
                 session_created: Dict[str, str]) -> ActionResult:
    """
    Apply one create/move action.

    session_created is the batch-scoped name -> id map and is updated in place
    when a folder is created. Resolution problems are reported as warnings and
    never raised.
    """
    if isinstance(action, CreateFolder):
        folder = Folder(id=new_id(), name=action.name, parent_id=action.parent_id)
        session_created[action.name] = folder.id
        logger.info("Created folder '%s' (%s)", folder.name, folder.id)
        return ActionResult(
            library=Library(bookmarks=list(library.bookmarks), folders=library.folders + [folder]),
            created_folder=folder,
        )

    if isinstance(action, MoveBookmarks):
        target_id, warnings = resolve_folder_reference(
            action.target_folder_id, folder_name_index, session_created)
        for warning in warnings:
            logger.warning(warning)
        if target_id is None:
            return ActionResult(library=library, warnings=warnings)

        wanted = set(action.bookmark_ids)
        moved = []
        bookmarks = []
        for bookmark in library.bookmarks:
            if bookmark.id in wanted:
                bookmark = dataclasses.replace(bookmark, folder=target_id)
                moved.append(bookmark.id)
            bookmarks.append(bookmark)

        missing = wanted.difference(moved)
        if missing:
            warnings.append(f"Unknown bookmarks not moved: {', '.join(sorted(missing))}")
            logger.warning(warnings[-1])

        logger.info("Moved %d bookmarks to folder %s", len(moved), target_id)
        return ActionResult(
            library=Library(bookmarks=bookmarks, folders=list(library.folders)),
            warnings=warnings,
            target_folder_id=target_id,
            moved_ids=moved,
        )

    raise TypeError(f"Unsupported action: {action!r}")


class ActionBatch:
    """Applies the actions of one command, in the order they arrive"""

    def __init__(self, library: Library):
        self.library = library
        self.folder_name_index = build_folder_name_index(library.folders)
        self.session_created = {}
        self.warnings = []
        self.results = []

    def apply(self, action: Action) -> ActionResult:
        result = apply_action(self.library, action, self.folder_name_index, self.session_created)
        self.library = result.library
        self.warnings.extend(result.warnings)
        self.results.append(result)
        return result

    def __call__(self, action: Action):
        self.apply(action)


# ============== Housekeeping transforms ==============

def _normalize_url(url: str) -> str:
    return url.lower().strip()


def find_duplicates(library: Library) -> List[List[Bookmark]]:
    """Group bookmarks that share a URL"""
    url_groups = {}
    for bookmark in library.bookmarks:
        url_groups.setdefault(_normalize_url(bookmark.url), []).append(bookmark)
    return [group for group in url_groups.values() if len(group) > 1]


def remove_duplicates(library: Library) -> Library:
    """Keep only the first bookmark for each URL"""
    seen = set()
    unique = []
    for bookmark in library.bookmarks:
        url = _normalize_url(bookmark.url)
        if url not in seen:
            seen.add(url)
            unique.append(bookmark)
    return Library(bookmarks=unique, folders=list(library.folders))


def alphabetize(library: Library) -> Library:
    """Sort folders and bookmarks by name, case-insensitively"""
    return Library(
        bookmarks=sorted(library.bookmarks, key=lambda b: b.title.lower()),
        folders=sorted(library.folders, key=lambda f: f.name.lower()),
    )


def proposal_preview(proposal: Proposal) -> List[Dict[str, Any]]:
    """Nested folder tree of a proposal with the number of bookmarks assigned to each folder"""
    counts = {}
    for assignment in proposal.assignments:
        counts[assignment.folder_path] = counts.get(assignment.folder_path, 0) + 1

    roots = {}
    for folder in proposal.folders:
        parts = folder.path.split('/')
        level = roots
        for depth, part in enumerate(parts, 1):
            if part not in level:
                path = '/'.join(parts[:depth])
                level[part] = {
                    'name': part,
                    'path': path,
                    'bookmark_count': counts.get(path, 0),
                    'children': {},
                }
            node = level[part]
            level = node['children']

    def to_list(level: Dict[str, Dict]) -> List[Dict[str, Any]]:
        return [dict(node, children=to_list(node['children'])) for node in level.values()]

    return to_list(roots)
