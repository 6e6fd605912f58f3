"""
LLM Templates and Configuration for Bookmark Organization
"""

import json
import os
from typing import Dict, List, Optional, Any
from dataclasses import dataclass
from urllib.parse import urlparse

# Load .env file
from dotenv import load_dotenv
load_dotenv()  # This will load .env from current directory or parent directories

from bookmark_models import Library

SUGGESTION_SAMPLE_SIZE = 150
COMMAND_SAMPLE_SIZE = 50

DEFAULT_MODELS = {
    'openai': 'gpt-4.1',
    'anthropic': 'claude-3-5-sonnet-latest',
}

TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass
class LLMConfig:
    """Configuration for LLM providers and persisted user settings"""
    provider: str = "openai"  # "openai" or "anthropic"
    model: str = "gpt-4.1"
    api_key: Optional[str] = None
    temperature: float = 0.1
    max_tokens: Optional[int] = 2000
    custom_template: Optional[str] = None
    auto_sort: bool = False

    @classmethod
    def from_env(cls) -> 'LLMConfig':
        """Create config from environment variables"""
        provider = os.environ.get('BOOKMARK_LLM_PROVIDER', 'openai').lower()

        if provider == 'openai':
            api_key = os.environ.get('OPENAI_API_KEY')
        elif provider == 'anthropic':
            api_key = os.environ.get('ANTHROPIC_API_KEY')
        else:
            raise ValueError(f"Unsupported LLM provider: {provider}. Supported: 'openai', 'anthropic'")

        max_tokens = os.environ.get('BOOKMARK_LLM_MAX_TOKENS', '').strip()

        return cls(
            provider=provider,
            model=os.environ.get('BOOKMARK_LLM_MODEL') or DEFAULT_MODELS[provider],
            api_key=api_key,
            temperature=float(os.environ.get('BOOKMARK_LLM_TEMPERATURE', '0.1')),
            max_tokens=int(max_tokens) if max_tokens else None,
            custom_template=os.environ.get('BOOKMARK_LLM_TEMPLATE'),  # This is optional
            auto_sort=os.environ.get('BOOKMARK_AUTO_SORT', '').strip().lower() in TRUE_VALUES,
        )


SUGGESTION_TEMPLATE = """You are an expert data architect. Transform this chaotic list of bookmarks into a pristine, logical folder hierarchy.

Tasks:
1. Group by clear, broad semantic themes (e.g., 'Development', 'Design', 'Finance', 'Reading').
2. Identify likely dead, obsolete, or temporary links (e.g., localhost, test domains) and place them in an 'Archive' folder.
3. Sort EVERY provided bookmark into the most appropriate folder.

Bookmarks to sort:
{bookmarks}

{user_prompt}

Return a JSON object with:
1. 'folders': An array of objects with 'path' (e.g., "Work/Projects/AI") and 'description'.
2. 'assignments': An array of objects with 'bookmarkId' and 'folderPath'.
3. 'reasoning': A brief explanation of the transformation.
"""

COMMAND_SYSTEM_TEMPLATE = """You are a bookmark organization assistant. Use the provided tools to help the user organize their library.
Current Library State:
Folders: {folders}
Bookmarks Sample: {bookmarks}"""

PROPOSAL_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "folders": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "path": {"type": "string", "description": "Full path of the folder, e.g. 'Tech/AI/Tools'"},
                    "description": {"type": "string"}
                },
                "required": ["path", "description"]
            }
        },
        "assignments": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "bookmarkId": {"type": "string"},
                    "folderPath": {"type": "string"}
                },
                "required": ["bookmarkId", "folderPath"]
            }
        },
        "reasoning": {"type": "string"}
    },
    "required": ["folders", "assignments", "reasoning"]
}

# Provider-neutral tool declarations; llm_client converts them per provider
COMMAND_TOOLS = [
    {
        "name": "move_bookmarks",
        "description": "Moves multiple bookmarks to a specific folder.",
        "parameters": {
            "type": "object",
            "properties": {
                "bookmarkIds": {"type": "array", "items": {"type": "string"}, "description": "List of bookmark IDs to move"},
                "targetFolderId": {"type": "string", "description": "The ID of the folder to move them to"}
            },
            "required": ["bookmarkIds", "targetFolderId"]
        }
    },
    {
        "name": "create_folder",
        "description": "Creates a new folder in the library.",
        "parameters": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Name of the new folder"},
                "parentId": {"type": "string", "description": "Optional parent folder ID"}
            },
            "required": ["name"]
        }
    },
]


def bookmark_domain(url: str) -> str:
    """Hostname of a URL, or its first 50 characters when it has none"""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        hostname = None
    return hostname or url[:50]


def prepare_bookmarks_for_llm(library: Library, limit: int = SUGGESTION_SAMPLE_SIZE) -> str:
    """Compact JSON list of bookmarks (id, short title, domain) for the suggestion prompt"""
    sample = []
    for bookmark in library.bookmarks[:limit]:
        sample.append({
            'id': bookmark.id,
            'title': bookmark.title[:60],
            'domain': bookmark_domain(bookmark.url),
        })
    return json.dumps(sample, ensure_ascii=False)


def get_template(config: LLMConfig) -> str:
    """Get the suggestion template, preferring a user-provided one"""
    # Check for template files in order of preference
    template_files = [
        config.custom_template,         # Environment variable override
        './llm_template.txt',           # Local project config
    ]

    for template_path in template_files:
        if template_path and os.path.exists(template_path):
            print(f"📋 Using template: {template_path}")
            with open(template_path, 'r', encoding='utf-8') as f:
                return f.read()

    # If custom_template is set but not a file, treat as inline template
    if config.custom_template:
        return config.custom_template

    return SUGGESTION_TEMPLATE


def build_suggestion_prompt(library: Library, config: LLMConfig, user_prompt: Optional[str] = None) -> str:
    """Fill the suggestion template with the bookmark sample and refinement request"""
    template = get_template(config)
    refinement = f"User Refinement Request: {user_prompt}" if user_prompt else ""
    # Use safe string replacement to avoid format conflicts
    prompt = template.replace('{bookmarks}', prepare_bookmarks_for_llm(library))
    return prompt.replace('{user_prompt}', refinement)


def build_command_system_prompt(library: Library) -> str:
    """System prompt describing the current folders and a bookmark sample"""
    folders = json.dumps([f.to_dict() for f in library.folders], ensure_ascii=False)
    bookmarks = json.dumps([b.to_dict() for b in library.bookmarks[:COMMAND_SAMPLE_SIZE]], ensure_ascii=False)
    return COMMAND_SYSTEM_TEMPLATE.replace('{folders}', folders).replace('{bookmarks}', bookmarks)


def openai_tools() -> List[Dict[str, Any]]:
    return [{"type": "function", "function": tool} for tool in COMMAND_TOOLS]


def anthropic_tools() -> List[Dict[str, Any]]:
    return [
        {"name": tool["name"], "description": tool["description"], "input_schema": tool["parameters"]}
        for tool in COMMAND_TOOLS
    ]
