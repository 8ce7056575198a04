"""
JSON utilities for cleaning LLM responses.
"""

import json
from typing import Any, Dict, Optional


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json and ``` markers
    if response.startswith('```json'):
        response = response[7:]
    elif response.startswith('```'):
        response = response[3:]

    if response.endswith('```'):
        response = response[:-3]

    return response.strip()


def parse_json_object(response: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a JSON object out of an LLM response.

    Falls back to the outermost brace-delimited span when the model wraps the
    object in prose.

    Args:
        response: Raw LLM response

    Returns:
        Parsed dict, or None if no JSON object could be recovered
    """
    if not response or not response.strip():
        return None

    cleaned = clean_json_response(response)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find('{'), cleaned.rfind('}')
        if start == -1 or end <= start:
            return None
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError:
            return None

    return data if isinstance(data, dict) else None
