"""
Minimal LLM client wrapper using Google Gemini.

Rationale:
- Use google-genai SDK (supported) for Gemini access.
- Keep interface tiny: call_llm(system_prompt, user_prompt) -> str.
- Ask for JSON output with a response schema; the caller still validates it.
- No retries / no fallback.
"""

import logging
import os
from typing import Any, Dict, Optional

from .errors import UpstreamResponseError

try:
    from google import genai
    from google.genai import types
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "Missing dependency for Gemini client. Install 'google-genai'. "
        "Original import error: " + str(e)
    )

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


def call_llm(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int = 8192,
    *,
    model_name: Optional[str] = None,
    temperature: float = 0.2,
    response_schema: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Call Gemini with a system instruction and user prompt, returning the raw text.
    """
    # Load API key lazily (after main.py sets env vars)
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("LLM_API_KEY")
    model_name = model_name or os.getenv("GEMINI_MODEL") or DEFAULT_MODEL

    if not api_key:
        raise UpstreamResponseError("GEMINI_API_KEY or LLM_API_KEY must be set in environment")

    config_kwargs: Dict[str, Any] = {
        "system_instruction": system_prompt,
        "temperature": temperature,
        "max_output_tokens": max_tokens,
        "response_mime_type": "application/json",
    }
    if response_schema is not None:
        config_kwargs["response_schema"] = response_schema

    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=model_name,
            contents=user_prompt,
            config=types.GenerateContentConfig(**config_kwargs),
        )
    except Exception as e:
        logger.error("llm.call_failed model=%s err=%s", model_name, str(e)[:200])
        raise UpstreamResponseError(f"Gemini API error: {e}")

    # Prefer the SDK's convenience property
    result = getattr(response, "text", None)
    if result:
        return result

    # Fallback: attempt to extract from candidates (SDK shape can vary across versions)
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        raise UpstreamResponseError("Gemini returned no candidates.")

    content = getattr(candidates[0], "content", None)
    parts = getattr(content, "parts", None) if content else None
    if parts:
        text0 = getattr(parts[0], "text", None)
        if text0:
            return text0

    raise UpstreamResponseError("Gemini returned empty response")
