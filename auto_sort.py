#!/usr/bin/env python3

"""
File a newly added bookmark into the most appropriate folder using the LLM.

Drives the command service against a Chrome/Edge "Bookmarks" file: folders
are created and bookmarks moved one action at a time, in the order the LLM
issued them.
"""

import argparse
import logging
import sys
from typing import Dict, List

from bookmark_models import Action, Bookmark, CreateFolder, Library, MoveBookmarks
from chrome_store import BOOKMARK_BAR_ID, ChromeBookmarkStore, folder_name_index_from_tree, folders_from_tree
from llm_client import LLMClient, create_llm_client
from llm_templates import LLMConfig
from reconciler import resolve_folder_reference

logger = logging.getLogger(__name__)

AUTO_SORT_COMMAND = (
    'I just added a new bookmark: "{title}" ({url}). Move it to the most appropriate existing folder '
    'from the list. If no strictly relevant folder exists, create one and move it there.'
)


def apply_store_action(store: ChromeBookmarkStore, action: Action, bookmark_id: str,
                       folder_name_index: Dict[str, List[str]], session_created: Dict[str, str]):
    """Carry out one action against the host store; store errors are logged, not raised"""
    if isinstance(action, CreateFolder):
        parent_id = action.parent_id or BOOKMARK_BAR_ID
        try:
            folder = store.create(title=action.name, parent_id=parent_id)
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to create folder {action.name} under {parent_id}: {e}")
            return
        session_created[action.name] = folder['id']
        logger.info(f"Created folder {action.name} with ID {folder['id']}")

    elif isinstance(action, MoveBookmarks):
        target_id, warnings = resolve_folder_reference(action.target_folder_id, folder_name_index, session_created)
        for warning in warnings:
            logger.warning(warning)
        if target_id is None or bookmark_id not in action.bookmark_ids:
            return
        try:
            store.move(bookmark_id, target_id)
            logger.info(f"Moved bookmark {bookmark_id} to folder {target_id}")
        except (KeyError, ValueError) as e:
            logger.error(f"Failed to move bookmark to {target_id}: {e}")


def auto_sort_bookmark(store: ChromeBookmarkStore, bookmark_id: str, client: LLMClient, config: LLMConfig) -> bool:
    """Ask the LLM where a new bookmark belongs and apply its actions. Returns True if the store changed."""
    if not config.auto_sort or not config.api_key:
        logger.info("Auto-sort disabled or no API key.")
        return False

    node = store.get(bookmark_id)
    # Only process actual bookmarks (with URL), not folders
    if 'url' not in node:
        return False

    tree = store.get_tree()
    folder_name_index = folder_name_index_from_tree(tree)
    library = Library(
        bookmarks=[Bookmark(
            id=node['id'],
            title=node['title'],
            url=node['url'],
            add_date=node.get('dateAdded') or None,
            folder=node['parentId'],
        )],
        folders=folders_from_tree(tree),
    )

    print(f"🤖 Auto-sorting new bookmark: {node['title']}")
    command = AUTO_SORT_COMMAND.format(title=node['title'], url=node['url'])

    # Names of folders created during this command, resolved before the global index
    session_created = {}

    def on_action(action: Action):
        apply_store_action(store, action, bookmark_id, folder_name_index, session_created)

    try:
        reply = client.process_command(library, command, on_action)
    except Exception as e:
        logger.error(f"Error auto-sorting bookmark: {e}")
        return False

    if reply:
        print(f"AI: {reply}")
    if store.modified:
        store.save()
    return store.modified


def main():
    parser = argparse.ArgumentParser(description="Sort a newly added bookmark into the right folder")
    parser.add_argument("bookmark_file", help="Path to Chrome/Edge Bookmarks file")
    parser.add_argument("bookmark_id", help="ID of the bookmark to file")
    parser.add_argument("--backup", action="store_true", help="Create backup before modifying the file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        config = LLMConfig.from_env()
        store = ChromeBookmarkStore(args.bookmark_file).load()
    except (ValueError, FileNotFoundError) as e:
        print(f"❌ {e}")
        sys.exit(1)

    if not config.auto_sort or not config.api_key:
        print("⏩ Auto-sort disabled or no API key configured (BOOKMARK_AUTO_SORT)")
        return

    if args.backup:
        print(f"📄 Backup created: {store.create_backup()}")

    try:
        changed = auto_sort_bookmark(store, args.bookmark_id, create_llm_client(), config)
    except KeyError as e:
        print(f"❌ {e}")
        sys.exit(1)

    if changed:
        print(f"✅ Bookmarks updated: {args.bookmark_file}")
    else:
        print("ℹ️ No changes made")


if __name__ == "__main__":
    main()
