"""
JSON isolation and repair for Gemini output.

Gemini is told to return a bare JSON object but regularly wraps it in prose or
markdown code fences, leaves trailing commas, or breaks long markdown strings
across raw newlines. ``parse_model_json`` is the single place that deals with
that: isolate, parse, repair once, parse again.
"""
import json
import logging
import re

from .errors import MalformedJsonError, NoJsonFoundError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json|JSON)?")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def isolate_json(text: str) -> str:
    """Return the substring from the first ``{`` to the last ``}``."""
    text = text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        logger.error(f"No JSON object found in response: {text[:200]!r}")
        raise NoJsonFoundError()
    return text[start:end + 1]


def _strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text)


def _strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _fix_newlines_in_json_strings(text: str) -> str:
    """Escape literal newlines inside JSON string values.

    Walks the text character-by-character, tracking whether we're inside
    a quoted string. A raw newline inside a string becomes ``\\n`` so the
    markdown line structure of each section survives parsing.
    """
    result = []
    in_string = False
    i = 0
    while i < len(text):
        c = text[i]
        if c == '\\' and in_string and i + 1 < len(text):
            # Escaped character inside string - keep both chars as-is
            result.append(c)
            result.append(text[i + 1])
            i += 2
            continue
        if c == '"':
            in_string = not in_string
        if in_string and c == '\n':
            result.append('\\n')
        elif in_string and c == '\r':
            pass
        else:
            result.append(c)
        i += 1
    return ''.join(result)


def repair_json(text: str) -> str:
    """Apply the fixed set of textual repairs used for the single retry."""
    repaired = _strip_code_fences(text)
    repaired = _strip_trailing_commas(repaired)
    repaired = _fix_newlines_in_json_strings(repaired)
    return repaired


def parse_model_json(text: str) -> dict:
    """Isolate and parse the JSON object in a model response.

    Raises:
        NoJsonFoundError: no ``{ ... }`` pair in the text.
        MalformedJsonError: still unparsable after one repair pass, or the
            top-level value is not an object.
    """
    candidate = isolate_json(text)

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse error (attempt 1 - direct): {e}")
        try:
            parsed = json.loads(repair_json(candidate))
            logger.info("JSON parsed after repair pass")
        except json.JSONDecodeError as e2:
            logger.error(f"JSON parse error (attempt 2 - repaired): {e2}. Raw text: {candidate[:500]!r}")
            raise MalformedJsonError() from e2

    if not isinstance(parsed, dict):
        raise MalformedJsonError("Malformed response: model output was not a JSON object.")
    return parsed
