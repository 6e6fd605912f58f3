"""
Data models for the bookmark library, LLM proposals and incremental actions
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Generate a collision-resistant identifier"""
    return uuid.uuid4().hex


def unique_tags(tags: Iterable[str]) -> List[str]:
    """Strip and de-duplicate tags, keeping first-seen order"""
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


@dataclass
class Bookmark:
    """A single link. folder=None means the bookmark sits at the root."""
    id: str
    title: str
    url: str
    add_date: Optional[str] = None
    icon: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    folder: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'id': self.id, 'title': self.title, 'url': self.url}
        if self.add_date:
            data['addDate'] = self.add_date
        if self.icon:
            data['icon'] = self.icon
        if self.tags:
            data['tags'] = list(self.tags)
        if self.folder is not None:
            data['folder'] = self.folder
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bookmark':
        return cls(
            id=data.get('id') or new_id(),
            title=data.get('title', ''),
            url=data.get('url', ''),
            add_date=data.get('addDate'),
            icon=data.get('icon'),
            tags=unique_tags(data.get('tags') or []),
            folder=data.get('folder'),
        )


@dataclass
class Folder:
    """A folder. Identity is the id; names may repeat anywhere in the tree."""
    id: str
    name: str
    parent_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'id': self.id, 'name': self.name}
        if self.parent_id is not None:
            data['parentId'] = self.parent_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Folder':
        return cls(
            id=data.get('id') or new_id(),
            name=data.get('name', ''),
            parent_id=data.get('parentId'),
        )


@dataclass
class Library:
    """
    All bookmarks and folders being organized.

    A Library is treated as a value: transforms build a new Library instead of
    editing this one, so the previous state can always be kept as a fallback.
    """
    bookmarks: List[Bookmark] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)

    def get_bookmark(self, bookmark_id: str) -> Optional[Bookmark]:
        for bookmark in self.bookmarks:
            if bookmark.id == bookmark_id:
                return bookmark
        return None

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        for folder in self.folders:
            if folder.id == folder_id:
                return folder
        return None

    def child_folders(self, parent_id: Optional[str]) -> List[Folder]:
        return [f for f in self.folders if f.parent_id == parent_id]

    def bookmarks_in(self, folder_id: Optional[str]) -> List[Bookmark]:
        return [b for b in self.bookmarks if b.folder == folder_id]

    def dangling_bookmarks(self) -> List[Bookmark]:
        """Bookmarks whose folder id points at a folder that no longer exists"""
        folder_ids = {f.id for f in self.folders}
        return [b for b in self.bookmarks if b.folder is not None and b.folder not in folder_ids]

    def folder_path(self, folder_id: Optional[str]) -> str:
        """Slash-delimited path of a folder, '' for the root"""
        parts = []
        visited = set()
        while folder_id is not None and folder_id not in visited:
            visited.add(folder_id)
            folder = self.get_folder(folder_id)
            if folder is None:
                break
            parts.append(folder.name)
            folder_id = folder.parent_id
        return '/'.join(reversed(parts))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bookmarks': [b.to_dict() for b in self.bookmarks],
            'folders': [f.to_dict() for f in self.folders],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Library':
        return cls(
            bookmarks=[Bookmark.from_dict(b) for b in data.get('bookmarks', [])],
            folders=[Folder.from_dict(f) for f in data.get('folders', [])],
        )


# ============== Proposals ==============

@dataclass
class FolderProposal:
    path: str
    description: str = ""


@dataclass
class Assignment:
    bookmark_id: str
    folder_path: str


def _entry_list(data: Dict[str, Any], key: str) -> List[Any]:
    entries = data.get(key)
    if entries is None:
        return []
    if not isinstance(entries, list):
        logger.warning("Ignoring '%s': expected a list, got %s", key, type(entries).__name__)
        return []
    return entries


@dataclass
class Proposal:
    """A complete candidate reorganization returned by the suggestion service"""
    folders: List[FolderProposal] = field(default_factory=list)
    assignments: List[Assignment] = field(default_factory=list)
    reasoning: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Proposal':
        """Build a proposal from LLM JSON, dropping malformed entries"""
        if not isinstance(data, dict):
            raise ValueError(f"Proposal must be a JSON object, got {type(data).__name__}")

        folders = []
        for entry in _entry_list(data, 'folders'):
            if isinstance(entry, str):
                folders.append(FolderProposal(path=entry))
            elif isinstance(entry, dict) and isinstance(entry.get('path'), str):
                description = entry.get('description')
                folders.append(FolderProposal(
                    path=entry['path'],
                    description=description if isinstance(description, str) else "",
                ))
            else:
                logger.warning("Dropping malformed folder entry: %r", entry)

        assignments = []
        for entry in _entry_list(data, 'assignments'):
            if (isinstance(entry, dict)
                    and isinstance(entry.get('bookmarkId'), str)
                    and isinstance(entry.get('folderPath'), str)):
                assignments.append(Assignment(entry['bookmarkId'], entry['folderPath']))
            else:
                logger.warning("Dropping malformed assignment: %r", entry)

        reasoning = data.get('reasoning')
        return cls(
            folders=folders,
            assignments=assignments,
            reasoning=reasoning if isinstance(reasoning, str) else "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'folders': [{'path': f.path, 'description': f.description} for f in self.folders],
            'assignments': [
                {'bookmarkId': a.bookmark_id, 'folderPath': a.folder_path}
                for a in self.assignments
            ],
            'reasoning': self.reasoning,
        }


# ============== Actions ==============

@dataclass(frozen=True)
class CreateFolder:
    name: str
    parent_id: Optional[str] = None


@dataclass(frozen=True)
class MoveBookmarks:
    # target_folder_id may be a folder id, a folder name, or the name of a
    # folder created earlier in the same batch
    bookmark_ids: Tuple[str, ...]
    target_folder_id: Optional[str]


Action = Union[CreateFolder, MoveBookmarks]

CREATE_FOLDER_KINDS = ('CREATE_FOLDER', 'create_folder')
MOVE_BOOKMARKS_KINDS = ('MOVE_BOOKMARKS', 'move_bookmarks')


def action_from_payload(kind: str, args: Any) -> Optional[Action]:
    """Validate an untyped action payload; returns None for anything unrecognized"""
    if not isinstance(args, dict):
        logger.warning("Ignoring %s action with non-object payload: %r", kind, args)
        return None

    if kind in CREATE_FOLDER_KINDS:
        name = args.get('name')
        if not isinstance(name, str):
            logger.warning("Ignoring create_folder without a name: %r", args)
            return None
        parent_id = args.get('parentId')
        return CreateFolder(name=name, parent_id=parent_id if isinstance(parent_id, str) and parent_id else None)

    if kind in MOVE_BOOKMARKS_KINDS:
        bookmark_ids = args.get('bookmarkIds')
        if isinstance(bookmark_ids, str):
            bookmark_ids = [bookmark_ids]
        if not isinstance(bookmark_ids, list):
            logger.warning("Ignoring move_bookmarks without bookmarkIds: %r", args)
            return None
        invalid = [b for b in bookmark_ids if not isinstance(b, str)]
        if invalid:
            logger.warning("Dropping non-string bookmark ids: %r", invalid)
        target = args.get('targetFolderId')
        return MoveBookmarks(
            bookmark_ids=tuple(b for b in bookmark_ids if isinstance(b, str)),
            target_folder_id=target if isinstance(target, str) else None,
        )

    logger.warning("Ignoring unrecognized action type: %s", kind)
    return None
