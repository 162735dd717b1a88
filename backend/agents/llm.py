"""
LLM gateway — routes an agent prompt to a chat model and parses JSON back.

Each task type has a preferred provider with the other as fallback. Providers
without an API key are skipped. When a response schema is given, the reply
must contain a JSON object; fenced blocks and surrounding prose are tolerated.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from config import config
from services.errors import LLMError

logger = logging.getLogger(__name__)


_MODEL_MAP: Dict[str, Callable[[], Any]] = {
    "anthropic": lambda: ChatAnthropic(
        model=config.ANTHROPIC_MODEL,
        api_key=config.ANTHROPIC_API_KEY,
        temperature=config.LLM_TEMPERATURE,
        max_tokens=config.LLM_MAX_TOKENS,
    ),
    "openai": lambda: ChatOpenAI(
        model=config.OPENAI_MODEL,
        api_key=config.OPENAI_API_KEY,
        temperature=config.LLM_TEMPERATURE,
        max_tokens=config.LLM_MAX_TOKENS,
    ),
}

# Preferred provider order per task type
_ROUTES: Dict[str, List[str]] = {
    "analysis": ["anthropic", "openai"],
    "reasoning": ["anthropic", "openai"],
    "research": ["openai", "anthropic"],
    "general": ["openai", "anthropic"],
}

_API_KEYS = {
    "anthropic": lambda: config.ANTHROPIC_API_KEY,
    "openai": lambda: config.OPENAI_API_KEY,
}

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL)


def clean_json(text: Any) -> Dict[str, Any]:
    """
    Extract a JSON object from model output.

    Tries the raw text, then a fenced ```json block, then the outermost
    brace pair. Raises LLMError when none parses to an object.
    """
    if isinstance(text, dict):
        return text
    text = str(text)

    candidates = [text]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first:last + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise LLMError("Failed to parse JSON response")


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        # Anthropic may return content blocks
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return str(content)


def _build_messages(system_prompt: Optional[str], prompt: str, response_schema: Optional[dict]) -> list:
    if response_schema:
        prompt = (
            f"{prompt}\n\n"
            "CRITICAL: Return the output EXCLUSIVELY in valid JSON format matching this schema:\n"
            f"{json.dumps(response_schema, indent=2)}"
        )
    messages = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.append(HumanMessage(content=prompt))
    return messages


async def invoke_llm(
    prompt: str,
    task_type: str = "general",
    response_schema: Optional[dict] = None,
    system_prompt: Optional[str] = None,
) -> Any:
    """
    Send a prompt to the best configured model for `task_type`.

    Args:
        prompt: The user prompt.
        task_type: "analysis" | "research" | "reasoning" | "general".
        response_schema: JSON schema the answer must follow. When given the
            parsed dict is returned, otherwise the raw text.
        system_prompt: Optional system message.

    Returns:
        A dict when `response_schema` is set, else a string.

    Raises:
        LLMError: if no provider is configured or every provider failed.
    """
    messages = _build_messages(system_prompt, prompt, response_schema)
    providers = [p for p in _ROUTES.get(task_type, _ROUTES["general"]) if _API_KEYS[p]()]
    if not providers:
        raise LLMError("No LLM provider configured (set ANTHROPIC_API_KEY or OPENAI_API_KEY)")

    last_error: Optional[Exception] = None
    for provider in providers:
        try:
            llm = _MODEL_MAP[provider]()
            response = await llm.ainvoke(messages)
            text = _message_text(response)
            return clean_json(text) if response_schema else text
        except Exception as exc:  # noqa: BLE001
            logger.warning("LLM provider %s failed for %s task: %s", provider, task_type, exc)
            last_error = exc

    raise LLMError(f"All LLM providers failed for {task_type} task: {last_error}")
