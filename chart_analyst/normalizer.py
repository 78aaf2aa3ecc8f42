"""
Extract the first JSON object embedded in free-form LLM output.

Models are told to answer with strict JSON but often wrap it in prose or
markdown fences. The scan here is a brace counter, not a JSON tokenizer:
it does not know about string literals, so an unescaped "{" or "}" inside a
string value can move the candidate boundary; a valid object may be missed
(the count ends below zero) or a wrong prefix accepted. Contract: the first
complete object scanning left to right wins, never the longest.

The text is scanned as received. Only when that finds nothing is a wrapping
``` fence pair removed and the scan repeated; fences inside string values
are never touched.
"""

import json
import re
import logging
from typing import Any, Optional

from .errors import NoJsonFoundError

logger = logging.getLogger(__name__)

_LEADING_FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_+-]*[ \t]*\r?\n?")
_TRAILING_FENCE_RE = re.compile(r"\r?\n?[ \t]*```\s*$")


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except (TypeError, ValueError):
        return False
    return True


def strip_code_fences(text: str) -> str:
    """Remove a wrapping ```lang ... ``` pair. Fences inside the text are left alone."""
    text = _LEADING_FENCE_RE.sub("", text, count=1)
    return _TRAILING_FENCE_RE.sub("", text, count=1).strip()


def _scan(text: str) -> Optional[str]:
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                candidate = text[start:i + 1]
                if _is_json(candidate):
                    return candidate
                logger.debug("normalizer.candidate_rejected end=%d len=%d", i, len(candidate))
    return None


def extract_first_json(text: str) -> str:
    """
    Return the JSON text of the first complete object found in `text`.

    Raises NoJsonFoundError (carrying the raw text) when nothing parses.
    """
    if not text:
        raise NoJsonFoundError("Provider returned an empty response", raw_text=text or "")

    # Fast path: the whole thing is already JSON.
    if _is_json(text):
        return text

    found = _scan(text)
    if found is not None:
        return found

    cleaned = strip_code_fences(text)
    if cleaned != text:
        if _is_json(cleaned):
            return cleaned
        found = _scan(cleaned)
        if found is not None:
            return found

    if "{" not in text:
        raise NoJsonFoundError("No JSON object found in provider response", raw_text=text)
    raise NoJsonFoundError("No parseable JSON object found in provider response", raw_text=text)


def parse_first_json(text: str) -> Any:
    return json.loads(extract_first_json(text))
