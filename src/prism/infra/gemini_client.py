"""Gemini access for the PRISM chat responder.

``get_model`` is the only entry point agents use. The API key is applied to
the SDK once per key, and structured-output schemas are reduced to the
subset Gemini's ``response_schema`` accepts.
"""

import copy
from functools import lru_cache

import google.generativeai as genai

from prism.app.config import get_settings


# JSON Schema keywords pydantic emits that Gemini's response_schema rejects
_DROPPED_KEYWORDS = frozenset({
    "$defs", "definitions", "title", "default", "examples",
    "additionalProperties", "maximum", "minimum", "exclusiveMaximum",
    "exclusiveMinimum", "maxLength", "minLength", "pattern",
    "maxItems", "minItems", "uniqueItems",
})


class GeminiNotConfiguredError(RuntimeError):
    """No API key is set, so no Gemini model can be built."""


@lru_cache(maxsize=4)
def _configure(api_key: str) -> None:
    genai.configure(api_key=api_key)


def clean_schema(schema: dict) -> dict:
    """Reduce a pydantic JSON Schema to what Gemini's response_schema accepts.

    ``$ref`` pointers are replaced by their ``$defs`` entry, ``Optional[X]``
    (an ``anyOf`` of X and null) becomes X with ``nullable: true``, and the
    keywords in ``_DROPPED_KEYWORDS`` are removed at every level. Property
    names are never dropped, even when one is called ``title``.
    """
    schema = copy.deepcopy(schema)
    defs = schema.pop("$defs", None) or schema.pop("definitions", None) or {}
    return _clean_node(schema, defs)


def _clean_node(node, defs: dict):
    if isinstance(node, list):
        return [_clean_node(item, defs) for item in node]
    if not isinstance(node, dict):
        return node

    if "$ref" in node:
        name = node["$ref"].rsplit("/", 1)[-1]
        if name not in defs:
            return node
        return _clean_node(copy.deepcopy(defs[name]), defs)

    variants = node.get("anyOf")
    if variants:
        non_null = [v for v in variants if v.get("type") != "null"]
        if len(non_null) == 1 and len(non_null) < len(variants):
            merged = {k: v for k, v in node.items() if k != "anyOf"}
            merged.update(non_null[0])
            merged["nullable"] = True
            return _clean_node(merged, defs)

    cleaned = {}
    for key, value in node.items():
        if key in _DROPPED_KEYWORDS:
            continue
        if key == "properties" and isinstance(value, dict):
            cleaned[key] = {name: _clean_node(prop, defs) for name, prop in value.items()}
        else:
            cleaned[key] = _clean_node(value, defs)
    return cleaned


def generation_config(
    temperature: float,
    json_mode: bool = False,
    response_schema: dict | None = None,
) -> dict:
    config: dict = {"temperature": temperature}
    if json_mode or response_schema:
        config["response_mime_type"] = "application/json"
    if response_schema:
        config["response_schema"] = clean_schema(response_schema)
    return config


def get_model(
    model_name: str | None = None,
    temperature: float = 0.2,
    json_mode: bool = False,
    response_schema: dict | None = None,
    system_instruction: str | None = None,
):
    """Build a ``GenerativeModel`` for one request.

    Raises GeminiNotConfiguredError when ``GEMINI_API_KEY`` is empty; the
    agent layer turns that into a failed ``AgentResult``.
    """
    settings = get_settings()
    if not settings.gemini_api_key:
        raise GeminiNotConfiguredError("GEMINI_API_KEY is not set")
    _configure(settings.gemini_api_key)

    return genai.GenerativeModel(
        model_name=model_name or settings.gemini_model,
        generation_config=generation_config(temperature, json_mode, response_schema),
        system_instruction=system_instruction,
    )
