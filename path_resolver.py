"""
Turn slash-delimited folder paths from LLM proposals into concrete folders
"""

from typing import Dict, Iterable, List, Tuple

from bookmark_models import Folder, new_id


def resolve_folder_paths(paths: Iterable[str]) -> Tuple[List[Folder], Dict[str, str]]:
    """
    Create one folder per distinct path prefix.

    Returns the new folders (parents before children) and a mapping from every
    prefix path to the id of the folder for its last segment. Prefixes shared
    by several paths ("A/B/C" and "A/B/D") map to the same folders.

    Segments are not cleaned up: "A//B" yields a folder named "" between
    "A" and "B".
    """
    folders = []
    path_to_id = {}

    for path in paths:
        parts = path.split('/')
        parent_id = None

        for depth, part in enumerate(parts, 1):
            current_path = '/'.join(parts[:depth])
            if current_path not in path_to_id:
                folder = Folder(id=new_id(), name=part, parent_id=parent_id)
                folders.append(folder)
                path_to_id[current_path] = folder.id
            parent_id = path_to_id[current_path]

    return folders, path_to_id
