"""
Language Model Client Helpers

Shared construction of the async OpenAI client and JSON extraction from
model output. Components accept an injected client so they can be exercised
without network access.
"""

import json
import os
import re
from typing import Any, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

load_dotenv()
load_dotenv('../.env')

DEFAULT_MODEL = "gpt-4o-mini"

_llm_client: Optional[AsyncOpenAI] = None


def get_llm_client() -> AsyncOpenAI:
    """Get or create the shared AsyncOpenAI client."""
    global _llm_client

    if _llm_client is None:
        api_key = os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OPENAI_API_KEY not found in environment variables")
        _llm_client = AsyncOpenAI(api_key=api_key)

    return _llm_client


def get_model() -> str:
    return os.getenv("OPENAI_MODEL", DEFAULT_MODEL)


def is_llm_configured() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def extract_json(content: str) -> Any:
    """
    Parse a JSON document out of model output.

    Tolerates markdown fences and leading prose around the object.

    Raises:
        json.JSONDecodeError: If no JSON document can be parsed
    """
    text = (content or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Fall back to the outermost braces
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise
        return json.loads(text[start:end + 1])


async def complete(
    client: AsyncOpenAI,
    prompt: str,
    system: Optional[str] = None,
    json_mode: bool = False,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    model: Optional[str] = None,
) -> str:
    """Single chat completion returning the stripped message text."""
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    kwargs = {"model": model or get_model(), "messages": messages}
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    if temperature is not None:
        kwargs["temperature"] = temperature
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens

    completion = await client.chat.completions.create(**kwargs)
    return (completion.choices[0].message.content or "").strip()
