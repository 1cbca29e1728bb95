import re
import json
import logging

logger = logging.getLogger(__name__)

PLACEHOLDER_TEXT = "No analysis could be generated."


def extract_path(data, path):
    """
    Walks `path` (dict keys and list indexes) through decoded JSON.
    Returns None as soon as a step is missing.
    """
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
        elif not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def extract_text(data, path, placeholder: str = PLACEHOLDER_TEXT) -> str:
    """Model text at `path`, or the placeholder when it is absent or empty."""
    value = extract_path(data, path)
    if not isinstance(value, str) or not value:
        logger.warning(f"⚠️ Expected text not found at {format_path(path)}. Using placeholder.")
        return placeholder
    return value


def format_path(path) -> str:
    out = ""
    for key in path:
        out += f"[{key}]" if isinstance(key, int) else f".{key}"
    return out.lstrip(".")


def extract_clean_json(text: str, strict: bool = True):
    """
    Strips '```json' formatting and finds the actual JSON object { ... }
    Returns None when nothing parses.
    """
    if not text:
        return None

    # 1. Remove Markdown code blocks
    text = re.sub(r"```json|```", "", text, flags=re.IGNORECASE).strip()

    # 2. Find the content between the first '{' and the last '}'
    start_idx = text.find("{")
    end_idx = text.rfind("}")

    if start_idx == -1 or end_idx == -1 or end_idx < start_idx:
        logger.error("Could not find any JSON-like structure in AI response.")
        return None

    json_str = text[start_idx : end_idx + 1]

    try:
        result = json.loads(json_str, strict=strict)
    except json.JSONDecodeError as e:
        logger.error(f"JSON Parsing Failed: {e}")
        logger.debug(f"Bad JSON String: {json_str[:500]}...")
        return None

    if not isinstance(result, dict):
        return None
    return result
