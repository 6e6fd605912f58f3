#!/usr/bin/env python3
"""
Bookmark Organizer
Loads a Netscape bookmarks.html export, reorganizes it with an LLM (full
proposals or free-text commands), and writes the result back as HTML.
"""

import json
import logging
import os
import shutil
import argparse
import sys
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from tqdm import tqdm

from bookmark_models import Bookmark, Library, Proposal
from llm_client import LLMClient, create_llm_client, load_proposal_file, save_proposal_file
from netscape_codec import parse, serialize
from reconciler import (
    ActionBatch, alphabetize, apply_proposal, find_duplicates, proposal_preview, remove_duplicates,
)

DEFAULT_OUTPUT_FILE = "organized_bookmarks.html"


class BookmarkManager:
    def __init__(self, bookmark_file: str):
        self.bookmark_file = bookmark_file
        self.library = Library()
        self.session = requests.Session()
        self.session.headers.update({
            'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36'
        })

        # Cache and state management
        self.cache_file = f"{bookmark_file}.cache.json"
        self.cache = self.load_cache()

    def load_cache(self) -> Dict:
        """Load cache from file if it exists"""
        if os.path.exists(self.cache_file):
            try:
                with open(self.cache_file, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                print(f"Warning: Could not load cache: {e}")
        return {'link_validation': {}}

    def save_cache(self):
        """Save cache to file"""
        try:
            with open(self.cache_file, 'w', encoding='utf-8') as f:
                json.dump(self.cache, f, indent=2, ensure_ascii=False)
        except OSError as e:
            print(f"Warning: Could not save cache: {e}")

    def load_library(self) -> Library:
        """Load bookmarks from a Netscape HTML export"""
        with open(self.bookmark_file, 'r', encoding='utf-8') as f:
            self.library = parse(f.read())
        return self.library

    def create_backup(self) -> str:
        """Create a backup of the original bookmark file"""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_file = f"{self.bookmark_file}.backup_{timestamp}"
        shutil.copy2(self.bookmark_file, backup_file)
        return backup_file

    def save_library(self, output_file: str):
        """Save the reorganized bookmarks as a Netscape HTML file"""
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(serialize(self.library))

    # ============== Cleanup ==============

    def find_duplicates(self) -> List[List[Bookmark]]:
        """Find duplicate bookmarks based on URL"""
        return find_duplicates(self.library)

    def remove_duplicates(self) -> int:
        """Drop all but the first bookmark for each URL; returns how many were removed"""
        before = len(self.library.bookmarks)
        self.library = remove_duplicates(self.library)
        return before - len(self.library.bookmarks)

    def validate_links(self, bookmarks: List[Bookmark], timeout: int = 5) -> List[Dict[str, Any]]:
        """Test bookmark URLs and mark invalid ones (with caching)"""
        link_cache = self.cache.setdefault('link_validation', {})
        urls_to_validate = [b for b in bookmarks if b.url not in link_cache]
        cache_hits = len(bookmarks) - len(urls_to_validate)

        if cache_hits > 0:
            print(f"Using cached results for {cache_hits} URLs, validating {len(urls_to_validate)} new URLs")

        for bookmark in tqdm(urls_to_validate, desc="Validating links", disable=not urls_to_validate):
            url = bookmark.url
            if url in link_cache:
                continue
            try:
                response = self.session.head(url, timeout=timeout, allow_redirects=True)
                validation_result = {
                    'status_code': response.status_code,
                    'is_valid': response.status_code < 400,
                    'final_url': response.url,
                    'validated_at': datetime.now().isoformat()
                }
            except requests.RequestException as e:
                validation_result = {
                    'status_code': None,
                    'is_valid': False,
                    'error': str(e),
                    'validated_at': datetime.now().isoformat()
                }

            link_cache[url] = validation_result
            time.sleep(0.1)  # Be respectful

        if urls_to_validate:
            self.save_cache()

        results = []
        for bookmark in bookmarks:
            result = {'id': bookmark.id, 'title': bookmark.title, 'url': bookmark.url}
            result.update(link_cache[bookmark.url])
            results.append(result)
        return results

    def alphabetize(self):
        self.library = alphabetize(self.library)

    # ============== LLM workflows ==============

    def request_proposal(self, user_prompt: Optional[str] = None, output_raw_response: bool = False,
                         raw_output_file: str = None, debug_prompt: bool = False) -> Optional[Proposal]:
        """Ask the suggestion service for a complete reorganization"""
        llm_client = create_llm_client(output_raw_response=output_raw_response,
                                       raw_output_file=raw_output_file, debug_prompt=debug_prompt)
        print("🤖 Requesting proposed folder structure from LLM...")
        return llm_client.suggest_structure(self.library, user_prompt)

    def apply_proposal(self, proposal: Proposal) -> Library:
        """Replace the folder tree with the proposal's; the previous library is returned"""
        previous = self.library
        self.library = apply_proposal(self.library, proposal)
        return previous

    def run_command(self, command: str, llm_client: Optional[LLMClient] = None) -> ActionBatch:
        """Run a free-text command and apply the actions it produces"""
        llm_client = llm_client or create_llm_client()
        batch = ActionBatch(self.library)
        print(f"> {command}")
        reply = llm_client.process_command(self.library, command, batch)

        for result in batch.results:
            if result.created_folder is not None:
                print(f"[SYSTEM] Created folder: {result.created_folder.name}")
            elif result.target_folder_id is not None:
                print(f"[SYSTEM] Moved {len(result.moved_ids)} items to folder {result.target_folder_id}")
        for warning in batch.warnings:
            print(f"⚠️ {warning}")
        if reply:
            print(f"AI: {reply}")

        self.library = batch.library
        return batch

    # ============== Display ==============

    def display_library_summary(self):
        print(f"📚 {len(self.library.bookmarks)} bookmarks in {len(self.library.folders)} folders")

    def display_proposal(self, proposal: Proposal):
        """Display a proposed restructure before it is applied"""
        print("\n🤖 PROPOSED ARCHITECTURE")
        print(f"{'='*60}")
        print(f"  Folders: {len(proposal.folders)}")
        print(f"  Assignments: {len(proposal.assignments)} of {len(self.library.bookmarks)} bookmarks")

        print("\n🗂️ PROPOSED FOLDER STRUCTURE:")
        self._display_folder_tree(proposal_preview(proposal))

        if proposal.reasoning:
            print("\n💭 LLM REASONING:")
            print(f"  {proposal.reasoning}")
        print(f"{'='*60}")

    def _display_folder_tree(self, nodes: List[Dict[str, Any]], indent: str = ""):
        """Recursively display folder tree structure"""
        for node in nodes:
            print(f"{indent}📁 {node['name']}/ ({node['bookmark_count']} items)")
            self._display_folder_tree(node['children'], indent + "  ")


def ask_approval(question: str) -> bool:
    while True:
        approval = input(f"{question} (y/n): ").lower().strip()
        if approval in ['y', 'yes']:
            return True
        elif approval in ['n', 'no']:
            return False
        print("Please enter 'y' or 'n'")


def main():
    parser = argparse.ArgumentParser(description="AI Bookmark Organizer for Netscape bookmark exports")
    parser.add_argument("bookmark_file", help="Path to exported bookmarks.html")
    parser.add_argument("--suggest", action="store_true", help="Ask the LLM for a complete folder reorganization")
    parser.add_argument("--prompt", help="Refinement request for --suggest (e.g. 'Group by tech stack')")
    parser.add_argument("--command", help="Free-text instruction applied as individual create/move actions")
    parser.add_argument("--apply-llm-json", help="Apply a saved proposal JSON (skips the LLM request)")
    parser.add_argument("--save-proposal", help="Save the proposal from --suggest with a library snapshot for later --apply-llm-json")
    parser.add_argument("--find-duplicates", action="store_true", help="List bookmarks sharing a URL")
    parser.add_argument("--remove-duplicates", action="store_true", help="Keep only the first bookmark per URL")
    parser.add_argument("--validate-links", action="store_true", help="Check every URL and report broken links")
    parser.add_argument("--alphabetize", action="store_true", help="Sort folders and bookmarks alphabetically")
    parser.add_argument("--backup", action="store_true", help="Create backup before processing")
    parser.add_argument("--yes", "-y", action="store_true", help="Apply proposals without asking")
    parser.add_argument("--output", "-o", default=DEFAULT_OUTPUT_FILE, help="Output file for organized bookmarks")
    parser.add_argument("--model", help="LLM model to use (e.g., gpt-4.1, claude-3-5-sonnet-latest)")
    parser.add_argument("--llm-provider", choices=["openai", "anthropic"], help="LLM provider")
    parser.add_argument("--llm-template", help="Suggestion prompt template file or inline text")
    parser.add_argument("--output-llm-response", action="store_true", help="Output raw LLM response for debugging")
    parser.add_argument("--debug-prompt", action="store_true", help="Save the prompt being sent to LLM for debugging")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show informational log messages")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not os.path.exists(args.bookmark_file):
        print(f"Error: Bookmark file '{args.bookmark_file}' not found.")
        sys.exit(1)

    # Set up LLM configuration from CLI args if provided
    if args.model:
        os.environ['BOOKMARK_LLM_MODEL'] = args.model
    if args.llm_provider:
        os.environ['BOOKMARK_LLM_PROVIDER'] = args.llm_provider
    if args.llm_template:
        os.environ['BOOKMARK_LLM_TEMPLATE'] = args.llm_template

    manager = BookmarkManager(args.bookmark_file)
    manager.load_library()
    manager.display_library_summary()

    if args.backup:
        backup_file = manager.create_backup()
        print(f"📄 Backup created: {backup_file}")

    proposal = None
    if args.apply_llm_json:
        try:
            proposal, snapshot = load_proposal_file(args.apply_llm_json)
        except (FileNotFoundError, ValueError) as e:
            print(f"❌ Error: {e}")
            sys.exit(1)
        print(f"📋 Loaded LLM JSON from: {args.apply_llm_json}")
        if snapshot is not None:
            # Bookmark ids in the proposal belong to the saved library, not to this parse
            manager.library = snapshot
            print("📚 Using the library snapshot saved with the proposal")
            manager.display_library_summary()

    if args.find_duplicates:
        duplicates = manager.find_duplicates()
        if duplicates:
            print(f"\nFound {len(duplicates)} sets of duplicate bookmarks:")
            for i, group in enumerate(duplicates, 1):
                print(f"\nSet {i}: {group[0].url}")
                for bookmark in group:
                    folder_path = manager.library.folder_path(bookmark.folder) or "(root)"
                    print(f"  - {bookmark.title} (in {folder_path})")
        else:
            print("No duplicate bookmarks found.")

    if args.remove_duplicates:
        removed = manager.remove_duplicates()
        print(f"✅ Removed {removed} duplicate bookmarks")

    if args.validate_links:
        print(f"\nValidating {len(manager.library.bookmarks)} bookmarks...")
        validated = manager.validate_links(manager.library.bookmarks)
        invalid = [b for b in validated if not b['is_valid']]
        if invalid:
            print(f"\nFound {len(invalid)} invalid links:")
            for bookmark in invalid:
                status = bookmark.get('status_code') or bookmark.get('error', 'Unknown error')
                print(f"  - {bookmark['title']}: {bookmark['url']} ({status})")
        else:
            print("✅ All bookmarks are valid!")

    try:
        if proposal is None and args.suggest:
            proposal = manager.request_proposal(
                args.prompt,
                output_raw_response=args.output_llm_response,
                debug_prompt=args.debug_prompt,
            )
            if proposal is None:
                print("✅ Raw response output completed")
                return
            if args.save_proposal:
                save_proposal_file(args.save_proposal, proposal, manager.library)
                print(f"💾 Proposal saved to: {args.save_proposal}")

        if proposal is not None:
            manager.display_proposal(proposal)
            if not args.yes and not ask_approval("Apply this folder restructure to your bookmarks?"):
                print("❌ Restructure cancelled")
                return
            manager.apply_proposal(proposal)
            print(f"[SYSTEM] Applied new hierarchical structure with {len(manager.library.folders)} folders.")
            unassigned = manager.library.dangling_bookmarks()
            if unassigned:
                print(f"⚠️ {len(unassigned)} bookmarks were not assigned by the proposal and will be left out of the export")

        if args.command:
            manager.run_command(args.command)

    except Exception as e:
        # LLM SDK errors and malformed responses
        print(f"❌ Error: {e}")
        sys.exit(1)

    if args.alphabetize:
        manager.alphabetize()

    manager.save_library(args.output)
    print(f"📄 Organized bookmarks saved: {args.output}")
    manager.display_library_summary()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nBye!")
        sys.exit(0)
