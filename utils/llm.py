"""Anthropic client shared by the review, refactoring and fixer agents.

Two things live here: ``call_llm`` (one streamed completion, JSON-decoded on
request) and ``parse_files`` (pull the rewritten files out of a response).
"""

import json
import logging
import os
import re
import time

import anthropic

from config.defaults import DEFAULTS

logger = logging.getLogger(__name__)

MODEL = DEFAULTS["model"]
MAX_TOKENS = DEFAULTS["max_tokens"]
RETRY_DELAY = 2

JSON_INSTRUCTION = "\n\nIMPORTANT: Respond ONLY with valid JSON. No markdown fences, no commentary."

_FENCE_OPEN_RE = re.compile(r"^```\w*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```$")
_FILE_BLOCK_RE = re.compile(r"```(\S+?)(?:[ \t]+(\S+?))?\n(.*?)```", re.DOTALL)
_COMMENT_PATH_RE = re.compile(r"^(?:#|//|/\*|<!--)\s*(.+?\.\w+)\s*(?:\*/|-->)?\s*\n")


def get_client():
    """Anthropic client for ANTHROPIC_API_KEY; agents cannot run without one."""
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError(
            "ANTHROPIC_API_KEY is not set. The review agents need it:\n"
            "  export ANTHROPIC_API_KEY='your-key-here'"
        )
    return anthropic.Anthropic(api_key=api_key)


def _stream_text(client, model, system_prompt, user_message):
    # Streamed so long reviews are not cut off by the SDK request timeout
    with client.messages.stream(
        model=model,
        max_tokens=MAX_TOKENS,
        system=system_prompt,
        messages=[{"role": "user", "content": user_message}],
    ) as stream:
        text = "".join(stream.text_stream)
        stop_reason = stream.get_final_message().stop_reason

    if stop_reason == "max_tokens":
        logger.warning("Agent response truncated at %d tokens", MAX_TOKENS)
    return text


def _decode_json(text):
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", cleaned))
    return json.loads(cleaned)


def call_llm(system_prompt, user_message, response_format=None, model=None):
    """One agent completion.

    With ``response_format="json"`` the reply is decoded (markdown fences are
    tolerated); a reply that still is not JSON comes back as the raw string so
    the agent can report it as a failed run. API errors are retried once.
    """
    client = get_client()
    if response_format == "json":
        system_prompt += JSON_INSTRUCTION

    try:
        text = _stream_text(client, model or MODEL, system_prompt, user_message)
    except anthropic.APIError as e:
        logger.warning("Anthropic API error, retrying in %ds: %s", RETRY_DELAY, e)
        time.sleep(RETRY_DELAY)
        text = _stream_text(client, model or MODEL, system_prompt, user_message)

    if response_format != "json":
        return text
    try:
        return _decode_json(text)
    except json.JSONDecodeError:
        logger.warning("Agent returned invalid JSON (%d chars); passing raw text on", len(text))
        return text


def parse_files(response):
    """``(relative_path, content)`` for every fenced block that names a file.

    The path may be the fence tag (```app/models.py), follow a language tag
    (```python app/models.py), or sit in a comment on the block's first line.
    Blocks with no path are ignored.
    """
    files = []
    for match in _FILE_BLOCK_RE.finditer(response):
        tag, second, content = match.groups()

        if "." in tag:
            path = tag
        elif second and "." in second:
            path = second
        else:
            comment = _COMMENT_PATH_RE.match(content)
            if not comment:
                continue
            path = comment.group(1).strip()
            content = content[comment.end():]

        files.append((path, content[:-1] if content.endswith("\n") else content))
    return files
