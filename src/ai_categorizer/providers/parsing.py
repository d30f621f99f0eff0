import json
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ai_categorizer.errors import ProviderResponseError

ShapeT = TypeVar("ShapeT", bound=BaseModel)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def extract_json_object(text: str) -> dict[str, Any]:
    """
    Parse the first JSON object in ``text``. Tolerates markdown fences and
    prose before or after the object. Raises ``ValueError`` when none parses.
    """
    cleaned = _strip_code_fence(text)
    try:
        result = json.loads(cleaned)
        if isinstance(result, dict):
            return result
        raise ValueError(f"JSON parsed to unexpected type: {type(result).__name__}")
    except json.JSONDecodeError:
        pass

    start = cleaned.find("{")
    if start == -1:
        raise ValueError(f"No JSON object found in response: {cleaned[:100]}")

    depth = 0
    in_string = False
    escaped = False
    for i, char in enumerate(cleaned[start:], start):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    result = json.loads(cleaned[start : i + 1])
                except json.JSONDecodeError:
                    break
                if isinstance(result, dict):
                    return result
                break

    raise ValueError(f"Could not parse JSON from response: {cleaned[:200]}")


def parse_payload(provider: str, text: str | None, shape: type[ShapeT]) -> ShapeT:
    if not text or not text.strip():
        raise ProviderResponseError(provider, "empty response")
    try:
        data = extract_json_object(text)
    except ValueError as e:
        raise ProviderResponseError(provider, str(e)) from e
    try:
        return shape.model_validate(data)
    except SchemaError as e:
        raise ProviderResponseError(
            provider,
            f"response does not match {shape.__name__}: {e.error_count()} error(s)",
        ) from e
