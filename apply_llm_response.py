#!/usr/bin/env python3

"""
Apply a saved LLM proposal to a bookmarks.html export without re-querying the LLM
"""

import sys

from bookmark_manager import BookmarkManager
from llm_client import load_proposal_file


def main():
    if len(sys.argv) != 4:
        print("Usage: python apply_llm_response.py <bookmarks.html> <raw_llm_response.json> <output.html>")
        print("Example: python apply_llm_response.py bookmarks.html raw.json organized_bookmarks.html")
        sys.exit(1)

    bookmarks_file = sys.argv[1]
    llm_response_file = sys.argv[2]
    output_file = sys.argv[3]

    # Load the LLM response
    print(f"📄 Loading LLM response from: {llm_response_file}")
    try:
        proposal, snapshot = load_proposal_file(llm_response_file)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ {e}")
        sys.exit(1)

    manager = BookmarkManager(bookmarks_file)
    if snapshot is not None:
        # Bookmark ids only match the library the proposal was made for
        print("📚 Using the library snapshot saved with the proposal")
        manager.library = snapshot
    else:
        print(f"📚 Loading bookmarks from: {bookmarks_file}")
        print("⚠️ No library snapshot in the proposal file; bookmark ids from another session will not match")
        try:
            manager.load_library()
        except OSError as e:
            print(f"❌ Failed to load bookmarks from {bookmarks_file}: {e}")
            sys.exit(1)

    if not manager.library.bookmarks:
        print(f"❌ No bookmarks found in {bookmarks_file}")
        sys.exit(1)

    print(f"📊 Total bookmarks found: {len(manager.library.bookmarks)}")

    # Duplicates are dropped before applying, like the main flow does
    duplicates = manager.find_duplicates()
    if duplicates:
        print(f"🔍 Found {len(duplicates)} sets of duplicates")
        removed = manager.remove_duplicates()
        print(f"✂️ After removing {removed} duplicates: {len(manager.library.bookmarks)} bookmarks")

    print("🤖 Applying LLM reorganization...")
    manager.apply_proposal(proposal)

    # Save the result
    print(f"💾 Saving reorganized bookmarks to: {output_file}")
    manager.save_library(output_file)

    print("✅ Successfully applied LLM reorganization!")
    print(f"📁 {len(manager.library.folders)} folders, {len(manager.library.bookmarks)} bookmarks")


if __name__ == "__main__":
    main()
