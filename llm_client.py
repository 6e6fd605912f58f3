"""
LLM Client Implementation for Bookmark Organization
"""

import json
import os
import re
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from bookmark_models import Action, Library, Proposal, action_from_payload
from llm_templates import (
    LLMConfig, PROPOSAL_SCHEMA, anthropic_tools, build_command_system_prompt,
    build_suggestion_prompt, openai_tools,
)

SUGGESTION_SYSTEM_PROMPT = "You are an expert at organizing bookmark collections. Respond with the exact JSON structure requested."
ANTHROPIC_DEFAULT_MAX_TOKENS = 8000  # Anthropic requires max_tokens


def setup_llm_logger(logs_dir: str = "./logs") -> logging.Logger:
    """Set up dedicated logger for LLM operations"""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    # Create logs directory if it doesn't exist
    os.makedirs(logs_dir, exist_ok=True)

    log_filename = f"{logs_dir}/{timestamp}.log"

    logger = logging.getLogger('llm_client')
    logger.setLevel(logging.DEBUG)

    # Clear any existing handlers
    logger.handlers.clear()

    # File handler for detailed logs
    file_handler = logging.FileHandler(log_filename, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)

    # Detailed formatter
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Don't propagate to root logger to avoid console spam
    logger.propagate = False

    logger.info("=== LLM Operations Log Started ===")
    logger.info(f"Log file: {log_filename}")

    # Print to console so user knows where logs are
    print(f"📝 Detailed LLM logging enabled: {log_filename}")

    return logger


@contextmanager
def progress_indicator(enabled: bool = True):
    """Spinner on the console while waiting for a slow LLM request"""
    if not enabled:
        yield
        return

    progress_active = [True]  # Use list to make it mutable in nested function

    def show_progress():
        chars = "|/-\\"
        i = 0
        while progress_active[0]:
            print(f"\r⏳ Waiting for LLM response... {chars[i % len(chars)]}", end="", flush=True)
            time.sleep(0.5)
            i += 1

    progress_thread = threading.Thread(target=show_progress)
    progress_thread.daemon = True
    progress_thread.start()
    try:
        yield
    finally:
        progress_active[0] = False
        progress_thread.join()
        print("\r" + " " * 50 + "\r", end="", flush=True)  # Clear the progress line


class LLMClient:
    def __init__(self, config: LLMConfig, output_raw_response: bool = False, raw_output_file: str = None,
                 debug_prompt: bool = False, client: Any = None, logger: Optional[logging.Logger] = None,
                 show_progress: bool = True):
        self.config = config
        self.client = client
        self.output_raw_response = output_raw_response
        self.raw_output_file = raw_output_file
        self.debug_prompt = debug_prompt
        self.show_progress = show_progress
        self.logger = logger or setup_llm_logger()
        self.logger.info(f"Initializing LLMClient with provider: {config.provider}, model: {config.model}")

        if config.provider not in ('openai', 'anthropic'):
            raise ValueError(f"Unsupported LLM provider: {config.provider}")

        if self.client is not None:
            return

        if config.provider == 'openai':
            import openai
            self.client = openai.OpenAI(
                api_key=config.api_key,
                timeout=300.0  # 5 minute timeout
            )
            self.logger.info("Successfully initialized OpenAI client")
        else:
            import anthropic
            self.client = anthropic.Anthropic(
                api_key=config.api_key,
                timeout=300.0  # 5 minute timeout
            )
            self.logger.info("Successfully initialized Anthropic client")

    def is_available(self) -> bool:
        """Check if LLM client is properly configured"""
        return self.client is not None

    # ============== Suggestion service ==============

    def suggest_structure(self, library: Library, user_prompt: Optional[str] = None) -> Optional[Proposal]:
        """Ask the LLM for a complete folder reorganization of the library"""
        if not self.is_available():
            raise RuntimeError("LLM client not properly configured")

        prompt = build_suggestion_prompt(library, self.config, user_prompt)
        request_id = f"suggest_{datetime.now().strftime('%H%M%S')}"

        self.logger.info(f"=== REQUEST {request_id} ===")
        self.logger.info(f"Provider: {self.config.provider}")
        self.logger.info(f"Model: {self.config.model}")
        self.logger.info(f"Bookmark count: {len(library.bookmarks)}")
        self.logger.info(f"Prompt length: {len(prompt)} characters")
        self.logger.debug(f"Full prompt:\n{prompt}")

        print(f"🔍 Sending {len(library.bookmarks)} bookmarks to LLM for a proposed structure...")
        print(f"Using {self.config.provider} with model {self.config.model}")

        # Save prompt for debugging if requested
        if self.debug_prompt:
            prompt_file = "debug_prompt.txt"
            with open(prompt_file, 'w', encoding='utf-8') as f:
                f.write(prompt)
            print(f"📝 Debug prompt saved to: {prompt_file}")

        try:
            with progress_indicator(self.show_progress):
                if self.config.provider == 'openai':
                    content = self._openai_suggestion(prompt)
                else:
                    content = self._anthropic_suggestion(prompt)
        except Exception as e:
            self.logger.error(f"LLM request failed: {e}")
            print(f"\n❌ Error during LLM request: {e}")
            raise

        self.logger.info(f"=== RESPONSE {request_id} ===")
        self.logger.info(f"Response length: {len(content)} characters")
        self.logger.info(f"Full response:\n{content}")

        self._output_raw(content)
        # If we're just outputting raw response, skip parsing entirely
        if self.output_raw_response:
            print("🔍 Skipping JSON parsing - raw output only")
            return None

        proposal = Proposal.from_dict(self._parse_llm_response(content))
        self.logger.info(f"=== PARSED RESULT {request_id} ===")
        self.logger.info(f"Folders: {len(proposal.folders)}, assignments: {len(proposal.assignments)}")
        return proposal

    def _openai_suggestion(self, prompt: str) -> str:
        request_data = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": SUGGESTION_SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            "temperature": self.config.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "bookmark_proposal",
                    "strict": False,
                    "schema": PROPOSAL_SCHEMA,
                }
            },
        }

        # Only add max_tokens if it's set
        if self.config.max_tokens:
            request_data["max_tokens"] = self.config.max_tokens

        self.logger.info(f"OpenAI request parameters: {json.dumps({k: v for k, v in request_data.items() if k not in ('messages', 'response_format')})}")
        response = self.client.chat.completions.create(**request_data)
        content = response.choices[0].message.content or ""

        usage = response.usage
        if usage is not None:
            self.logger.info(f"Tokens used - Input: {usage.prompt_tokens}, Output: {usage.completion_tokens}")
        print(f"✅ Received response from OpenAI ({len(content)} characters)")
        return content

    def _anthropic_suggestion(self, prompt: str) -> str:
        request_data = {
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
            "system": SUGGESTION_SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}]
        }

        self.logger.info(f"Anthropic request parameters: {json.dumps({k: v for k, v in request_data.items() if k not in ('messages', 'system')})}")
        response = self.client.messages.create(**request_data)
        content = "".join(block.text for block in response.content if block.type == "text")

        usage = response.usage
        if usage is not None:
            self.logger.info(f"Tokens used - Input: {usage.input_tokens}, Output: {usage.output_tokens}")
        print(f"✅ Received response from Anthropic ({len(content)} characters)")
        return content

    def _output_raw(self, content: str):
        """Output raw response immediately if requested (before any processing)"""
        if not self.output_raw_response:
            return
        if self.raw_output_file:
            with open(self.raw_output_file, 'w', encoding='utf-8') as f:
                f.write(content)
            print(f"✅ Raw LLM response saved to: {self.raw_output_file}")
        else:
            print(f"\n{'='*80}")
            print(f"🔍 FULL RAW LLM RESPONSE ({self.config.provider}):")
            print(f"{'='*80}")
            print(content)
            print(f"{'='*80}\n")
        print(f"📏 Response length: {len(content)} characters")

    # ============== Command service ==============

    def process_command(self, library: Library, command: str, on_action: Callable[[Action], Any]) -> str:
        """
        Run a free-text command with tool calling.

        Every valid tool call is turned into an Action and passed to on_action,
        in order, once the whole response has arrived. Returns the model's text
        reply, which may be empty.
        """
        if not self.is_available():
            raise RuntimeError("LLM client not properly configured")

        system_prompt = build_command_system_prompt(library)
        self.logger.info("=== COMMAND REQUEST ===")
        self.logger.info(f"Command: {command}")
        self.logger.debug(f"System prompt:\n{system_prompt}")

        try:
            with progress_indicator(self.show_progress):
                if self.config.provider == 'openai':
                    text, calls = self._openai_command(system_prompt, command)
                else:
                    text, calls = self._anthropic_command(system_prompt, command)
        except Exception as e:
            self.logger.error(f"Command request failed: {e}")
            raise

        self.logger.info(f"=== COMMAND RESPONSE: {len(calls)} tool calls ===")
        actions = []
        for name, args in calls:
            self.logger.info(f"Tool call {name}: {args}")
            action = action_from_payload(name, args)
            if action is None:
                self.logger.warning(f"Skipping unusable tool call {name}: {args}")
                continue
            actions.append(action)

        for action in actions:
            on_action(action)

        self.logger.info(f"Command reply: {text}")
        return text

    def _openai_command(self, system_prompt: str, command: str) -> Tuple[str, List[Tuple[str, Any]]]:
        request_data = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": command}
            ],
            "temperature": self.config.temperature,
            "tools": openai_tools(),
        }
        if self.config.max_tokens:
            request_data["max_tokens"] = self.config.max_tokens

        response = self.client.chat.completions.create(**request_data)
        message = response.choices[0].message

        calls = []
        for tool_call in message.tool_calls or []:
            try:
                args = json.loads(tool_call.function.arguments or "{}")
            except json.JSONDecodeError as e:
                self.logger.warning(f"Malformed arguments for {tool_call.function.name}: {e}")
                continue
            calls.append((tool_call.function.name, args))
        return message.content or "", calls

    def _anthropic_command(self, system_prompt: str, command: str) -> Tuple[str, List[Tuple[str, Any]]]:
        response = self.client.messages.create(
            model=self.config.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
            system=system_prompt,
            messages=[{"role": "user", "content": command}],
            tools=anthropic_tools(),
        )

        texts = []
        calls = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                calls.append((block.name, block.input))
        return "\n".join(texts), calls

    # ============== Response parsing ==============

    def _parse_llm_response(self, content: str) -> Dict:
        """Extract and decode the JSON object in an LLM response"""
        self.logger.info("=== Starting response parsing ===")
        content = content.strip()
        self.logger.debug(f"Raw response content (first 1000 chars): {content[:1000]}")

        json_str = None

        # Strategy 1: Look for code blocks
        if '```json' in content:
            start_idx = content.find('```json') + len('```json')
            end_idx = content.find('```', start_idx)
            if end_idx != -1:
                json_str = content[start_idx:end_idx].strip()

        # Strategy 2: Look for bare JSON
        if not json_str and '{' in content and '}' in content:
            start_idx = content.find('{')
            end_idx = content.rfind('}') + 1
            if end_idx > start_idx:
                json_str = content[start_idx:end_idx]

        # Strategy 3: Reconstruct a response that starts at its first key
        if not json_str and content.lstrip().startswith('"folders"'):
            json_str = "{" + content.lstrip()
            if not json_str.endswith('}'):
                json_str += "}"

        if not json_str:
            raise ValueError(f"Could not extract valid JSON from LLM response: {content[:200]}...")

        self.logger.info(f"Successfully extracted JSON string ({len(json_str)} chars)")

        # Check if JSON appears to be truncated
        if not json_str.rstrip().endswith('}'):
            raise ValueError(f"JSON appears to be truncated (doesn't end with closing brace). Length: {len(json_str)} chars")

        json_str = self._attempt_json_repair(json_str)
        try:
            result = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"JSON parsing error: {e}. Attempted to parse: {json_str[:200]}...")

        if not isinstance(result, dict):
            raise ValueError("LLM response must be a JSON object")
        self.logger.info("JSON parsing successful")
        return result

    def _attempt_json_repair(self, json_str: str) -> str:
        """Attempt to repair common JSON formatting issues"""
        # Fix trailing commas before closing brackets/braces
        json_str = re.sub(r',(\s*[}\]])', r'\1', json_str)

        # Add missing commas between string items on consecutive lines
        lines = json_str.split('\n')
        repaired_lines = []
        for i, line in enumerate(lines):
            stripped = line.strip()
            if (i < len(lines) - 1 and
                    stripped.endswith('"') and not stripped.endswith('",') and
                    lines[i + 1].strip().startswith('"')):
                repaired_lines.append(line + ',')
            else:
                repaired_lines.append(line)

        return '\n'.join(repaired_lines)


def save_proposal_file(json_file: str, proposal: Proposal, library: Library):
    """Save a proposal together with the library whose bookmark ids it refers to"""
    with open(json_file, 'w', encoding='utf-8') as f:
        json.dump({'proposal': proposal.to_dict(), 'library': library.to_dict()}, f, indent=2, ensure_ascii=False)


def load_proposal_file(json_file: str) -> Tuple[Proposal, Optional[Library]]:
    """
    Load a saved proposal.

    Accepts either a bare proposal (raw LLM JSON) or a file written by
    save_proposal_file; the library snapshot is returned when present.
    """
    try:
        with open(json_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"LLM JSON file not found: {json_file}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in file {json_file}: {e}")

    if isinstance(data, dict) and 'proposal' in data:
        library = Library.from_dict(data['library']) if isinstance(data.get('library'), dict) else None
        return Proposal.from_dict(data['proposal']), library
    return Proposal.from_dict(data), None


def create_llm_client(output_raw_response: bool = False, raw_output_file: str = None, debug_prompt: bool = False) -> LLMClient:
    """Factory function to create LLM client from environment"""
    config = LLMConfig.from_env()
    if not config.api_key:
        raise ValueError(f"No API key configured for provider '{config.provider}'")
    return LLMClient(config, output_raw_response, raw_output_file, debug_prompt)
