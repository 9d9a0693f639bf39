from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol, Union

import yaml
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from scenechain.utils.base import setup_logger

logger = setup_logger(__name__)

DEFAULT_PROMPTS_FILE = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "config", "prompts.yaml"
)


class LLMResponseError(ValueError):
    pass


class LLMClient(Protocol):
    async def complete(self, instructions: str, constraints: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class Available:
    client: LLMClient


@dataclass(frozen=True)
class Unavailable:
    reason: str = "no LLM configured"


LLMCapability = Union[Available, Unavailable]


@lru_cache(maxsize=8)
def load_prompts(path: Optional[str] = None) -> Dict[str, Any]:
    with open(path or DEFAULT_PROMPTS_FILE, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def render_prompt(template: str, **values: Any) -> str:
    # Templates contain literal JSON braces, so str.format is not usable here.
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template


def parse_json_object(content: str) -> Dict[str, Any]:
    text = content.strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        raise LLMResponseError(f"No JSON object in LLM response: {content[:200]!r}")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise LLMResponseError(f"Malformed JSON in LLM response: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMResponseError("LLM response JSON is not an object")
    return data


def _parse_extra(extra: Optional[str | Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(extra, dict):
        return dict(extra)
    if isinstance(extra, str) and extra.strip():
        try:
            return json.loads(extra)
        except json.JSONDecodeError:
            logger.warning(f"Ignoring unparseable llm_extra_params: {extra!r}")
            return {}
    return {}


def _create_chat_model(
    provider: str,
    model_id: str,
    api_key: Optional[str],
    base_url: Optional[str],
    extra_params: Optional[str | Dict[str, Any]] = None,
    timeout: Optional[float] = None,
) -> ChatOpenAI:
    p = (provider or "").lower()
    if p not in {"openai", "openai_compatible", "deepseek", "dashscope", "vllm", "sglang", "ollama"}:
        logger.warning(f"Provider '{provider}' not explicitly supported; using OpenAI-compatible ChatOpenAI.")

    extra = _parse_extra(extra_params)
    temperature = extra.pop("temperature", None)
    max_completion_tokens = extra.pop("max_completion_tokens", None)

    return ChatOpenAI(
        model=model_id,
        api_key=api_key or None,
        base_url=base_url or None,
        temperature=temperature,
        max_completion_tokens=max_completion_tokens,
        timeout=timeout,
        model_kwargs=extra or {},
    )


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "".join(parts)
    return str(content)


class LangChainLLMClient:
    """LLM capability backed by an OpenAI-compatible chat model."""

    def __init__(self, model: Any):
        self.model = model

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "LangChainLLMClient":
        return cls(_create_chat_model(
            provider=config.get("llm_provider", "openai"),
            model_id=config.get("llm_model_id", ""),
            api_key=config.get("llm_api_key"),
            base_url=config.get("llm_base_url"),
            extra_params=config.get("llm_extra_params"),
            timeout=config.get("llm_timeout_sec"),
        ))

    async def complete(self, instructions: str, constraints: Dict[str, Any]) -> Dict[str, Any]:
        messages = [
            SystemMessage(content=instructions),
            HumanMessage(content=json.dumps(constraints, ensure_ascii=False)),
        ]
        response = await self.model.ainvoke(messages)
        return parse_json_object(_message_text(response.content))


def resolve_llm_capability(config: Dict[str, Any]) -> LLMCapability:
    """Decide once whether an LLM can be used; callers branch on the returned variant."""
    if not config.get("llm_api_key"):
        return Unavailable("missing LLM API key")
    if not config.get("llm_model_id"):
        return Unavailable("missing LLM model id")
    try:
        client = LangChainLLMClient.from_config(config)
    except Exception as exc:
        logger.warning(f"LLM client could not be created: {exc}")
        return Unavailable(f"LLM misconfigured: {exc}")
    return Available(client)
