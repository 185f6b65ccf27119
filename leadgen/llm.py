"""
Chat model factory and a strict-JSON completion helper.

The factory tolerates missing credentials by returning ``None``; callers
turn that into ``LLMUnavailable`` and from there into their typed fallback.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import openai
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from leadgen import settings
from leadgen.retry import BackoffPolicy, with_retry

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError)


class LLMUnavailable(RuntimeError):
    """No chat model is configured."""


class LLMResponseError(ValueError):
    """The model answered with something that is not a JSON object."""


def _make_chat_client(model: str, temperature: Optional[float]):
    kwargs: Dict[str, Any] = {"timeout": settings.LLM_TIMEOUT_S, "max_retries": 0}
    # Some models (e.g., gpt-5) only support default temperature; omit override
    if temperature is not None and not (model or "").lower().startswith("gpt-5"):
        kwargs["temperature"] = temperature
    if settings.AZURE_OPENAI_ENDPOINT and settings.AZURE_OPENAI_API_KEY:
        return AzureChatOpenAI(
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            azure_deployment=settings.AZURE_OPENAI_DEPLOYMENT,
            api_key=settings.AZURE_OPENAI_API_KEY,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            **kwargs,
        )
    if settings.OPENAI_API_KEY:
        return ChatOpenAI(model=model, api_key=settings.OPENAI_API_KEY, **kwargs)
    return None


def get_chat_model(model: Optional[str] = None, temperature: Optional[float] = None):
    """Configured chat model, or ``None`` when no credentials are present."""
    try:
        return _make_chat_client(
            model or settings.LANGCHAIN_MODEL,
            settings.TEMPERATURE if temperature is None else temperature,
        )
    except Exception as exc:
        logger.warning("chat model unavailable: %s", exc)
        return None


def parse_json_object(content: Any) -> Dict[str, Any]:
    text = content if isinstance(content, str) else str(content or "")
    text = text.strip()
    # Tolerate ```json fences some deployments still emit
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"malformed JSON from model: {exc}") from exc
    if isinstance(data, list):
        # Some models answer list-shaped prompts with a bare array
        return {"items": data}
    if not isinstance(data, dict):
        raise LLMResponseError("model JSON is not an object")
    return data


async def complete_json(llm, system: str, user: str, *, policy: Optional[BackoffPolicy] = None) -> Dict[str, Any]:
    """One system+user turn in JSON mode; returns the parsed object.

    Raises LLMUnavailable when ``llm`` is None, LLMResponseError on bad JSON,
    and re-raises the last transient OpenAI error once retries are exhausted.
    """
    if llm is None:
        raise LLMUnavailable("no chat model configured")
    bound = llm.bind(response_format={"type": "json_object"})
    messages = [SystemMessage(content=system), HumanMessage(content=user)]

    async def _call():
        return await bound.ainvoke(messages)

    response = await with_retry(_call, retry_on=TRANSIENT_ERRORS, policy=policy)
    return parse_json_object(getattr(response, "content", response))
