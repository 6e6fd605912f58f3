"""
Host bookmark store backed by a Chrome/Edge "Bookmarks" JSON file.

Exposes the same operations as the browser bookmarks API: get_tree, create
and move, working on nodes shaped like chrome.bookmarks tree nodes.
"""

import json
import shutil
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from bookmark_models import Folder

ROOT_ID = "0"
BOOKMARK_BAR_ID = "1"


def chrome_timestamp() -> str:
    return str(int(time.time() * 1000000))


class ChromeBookmarkStore:
    def __init__(self, bookmark_file: str):
        self.bookmark_file = bookmark_file
        self.bookmarks = None
        self._nodes = {}
        self._parents = {}
        self.modified = False

    def load(self) -> 'ChromeBookmarkStore':
        """Load bookmarks from Chrome/Edge bookmark file"""
        with open(self.bookmark_file, 'r', encoding='utf-8') as f:
            self.bookmarks = json.load(f)
        self._reindex()
        return self

    def _reindex(self):
        self._nodes = {}
        self._parents = {}

        def index(node: Dict, parent: Optional[Dict]):
            self._nodes[node['id']] = node
            if parent is not None:
                self._parents[node['id']] = parent
            for child in node.get('children', []):
                index(child, node)

        for root_node in self.bookmarks.get('roots', {}).values():
            if isinstance(root_node, dict) and 'id' in root_node:
                index(root_node, None)

    def _to_tree_node(self, node: Dict, parent_id: str) -> Dict[str, Any]:
        tree_node = {
            'id': node['id'],
            'parentId': parent_id,
            'title': node.get('name', ''),
            'dateAdded': node.get('date_added'),
        }
        if node.get('type') == 'url':
            tree_node['url'] = node.get('url', '')
        else:
            tree_node['children'] = [self._to_tree_node(child, node['id']) for child in node.get('children', [])]
        return tree_node

    def get_tree(self) -> List[Dict[str, Any]]:
        """Whole tree under a synthetic root node with id "0" """
        children = []
        for root_node in self.bookmarks.get('roots', {}).values():
            if isinstance(root_node, dict) and 'id' in root_node:
                children.append(self._to_tree_node(root_node, ROOT_ID))
        return [{'id': ROOT_ID, 'title': '', 'children': children}]

    def get(self, node_id: str) -> Dict[str, Any]:
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Bookmark node {node_id} not found")
        parent = self._parents.get(node_id)
        return self._to_tree_node(node, parent['id'] if parent else ROOT_ID)

    def _folder_node(self, folder_id: str) -> Dict:
        node = self._nodes.get(folder_id)
        if node is None:
            raise KeyError(f"Folder {folder_id} not found")
        if node.get('type') != 'folder':
            raise ValueError(f"Node {folder_id} is not a folder")
        return node

    def _next_id(self) -> str:
        numeric = [int(node_id) for node_id in self._nodes if node_id.isdigit()]
        return str(max(numeric, default=3) + 1)

    def create(self, title: str, parent_id: str, url: Optional[str] = None) -> Dict[str, Any]:
        """Create a folder (or a bookmark when url is given) at the end of parent_id"""
        parent = self._folder_node(parent_id)
        node = {
            'date_added': chrome_timestamp(),
            'guid': str(uuid.uuid4()),
            'id': self._next_id(),
            'name': title,
        }
        if url is None:
            node['children'] = []
            node['date_modified'] = node['date_added']
            node['type'] = 'folder'
        else:
            node['type'] = 'url'
            node['url'] = url

        parent.setdefault('children', []).append(node)
        self._nodes[node['id']] = node
        self._parents[node['id']] = parent
        self.modified = True
        return self._to_tree_node(node, parent_id)

    def move(self, node_id: str, parent_id: str):
        """Move a node to the end of another folder"""
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Bookmark node {node_id} not found")
        if node_id not in self._parents:
            raise ValueError(f"Cannot move root folder {node_id}")
        new_parent = self._folder_node(parent_id)

        # A folder may not end up inside itself
        ancestor = new_parent
        while ancestor is not None:
            if ancestor['id'] == node_id:
                raise ValueError(f"Cannot move folder {node_id} into its own subtree")
            ancestor = self._parents.get(ancestor['id'])

        old_parent = self._parents[node_id]
        old_parent['children'] = [child for child in old_parent['children'] if child['id'] != node_id]
        new_parent.setdefault('children', []).append(node)
        self._parents[node_id] = new_parent
        new_parent['date_modified'] = chrome_timestamp()
        self.modified = True

    def create_backup(self) -> str:
        """Create a backup of the original bookmark file"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_file = f"{self.bookmark_file}.backup_{timestamp}"
        shutil.copy2(self.bookmark_file, backup_file)
        return backup_file

    def save(self, output_file: Optional[str] = None):
        """Write the bookmarks back, by default over the original file"""
        if self.modified:
            # The stored checksum no longer matches the edited tree
            self.bookmarks.pop('checksum', None)
        with open(output_file or self.bookmark_file, 'w', encoding='utf-8') as f:
            json.dump(self.bookmarks, f, indent=2, ensure_ascii=False)


def _walk_folders(tree: List[Dict[str, Any]]):
    """Yield (folder node, parent id) in pre-order, skipping the synthetic root"""
    def visit(node: Dict[str, Any], parent_id: Optional[str]):
        if 'url' in node:
            return
        if node['id'] != ROOT_ID:
            yield node, parent_id
            parent_id = node['id']
        for child in node.get('children', []):
            yield from visit(child, parent_id)

    for node in tree:
        yield from visit(node, None)


def folders_from_tree(tree: List[Dict[str, Any]]) -> List[Folder]:
    return [Folder(id=node['id'], name=node.get('title', ''), parent_id=parent_id)
            for node, parent_id in _walk_folders(tree)]


def folder_name_index_from_tree(tree: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Folder name -> ids, in traversal order"""
    index = {}
    for node, _ in _walk_folders(tree):
        index.setdefault(node.get('title', ''), []).append(node['id'])
    return index
