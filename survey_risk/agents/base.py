# survey_risk/agents/base.py
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from survey_risk.app.errors import (
    NarrativeAuthError,
    NarrativeQuotaExceeded,
    NarrativeServiceFailure,
)
from survey_risk.app.logging import get_logger

logger = get_logger(__name__)


class AgentError(Exception):
    pass


class PromptNotFound(AgentError):
    pass


class AgentOutputParseError(AgentError):
    pass


class AgentOutputValidationError(AgentError):
    pass


@dataclass(frozen=True)
class AgentResponse:
    payload: Dict[str, Any]
    raw_text: Optional[str] = None


def _read_text_file(path: Path) -> str:
    if not path.exists() or not path.is_file():
        raise PromptNotFound(f"Prompt file not found: {path}")
    return path.read_text(encoding="utf-8")


def render_prompt(template: str, variables: Dict[str, Any]) -> str:
    def repl(match: re.Match[str]) -> str:
        key = match.group(1).strip()
        if key not in variables:
            return match.group(0)
        v = variables[key]
        if isinstance(v, (dict, list)):
            return json.dumps(v, ensure_ascii=False, indent=2)
        return str(v)

    return re.sub(r"\{\{\s*([a-zA-Z0-9_\.]+)\s*\}\}", repl, template)


def parse_json_object(text: str) -> Dict[str, Any]:
    s = text.strip()
    # Strip a Markdown fence such as ```json
    if s.startswith("```"):
        newline_idx = s.find("\n")
        if newline_idx != -1:
            s = s[newline_idx + 1:]
        if s.endswith("```"):
            s = s[:-3]
    s = s.strip()

    try:
        obj = json.loads(s)
    except json.JSONDecodeError:
        start = s.find("{")
        end = s.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise AgentOutputParseError(f"Could not find a JSON object in output: {text[:100]}...")
        try:
            obj = json.loads(s[start: end + 1])
        except json.JSONDecodeError as e:
            raise AgentOutputParseError(f"Failed to parse JSON object: {e}") from e

    if not isinstance(obj, dict):
        raise AgentOutputParseError("Expected a JSON object at top level.")
    return obj


def validate_with_jsonschema(payload: Dict[str, Any], schema: Optional[Dict[str, Any]]) -> None:
    if schema is None:
        return
    try:
        jsonschema.validate(instance=payload, schema=schema)
    except jsonschema.ValidationError as e:
        raise AgentOutputValidationError(e.message) from e


def classify_llm_error(exc: Exception) -> NarrativeServiceFailure:
    """
    Map a provider exception onto the narrative failure taxonomy.

    The OpenAI client reports quota exhaustion as code ``insufficient_quota``
    (HTTP 429) and rejected keys as HTTP 401.
    """
    code = getattr(exc, "code", None)
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    message = str(exc) or type(exc).__name__
    if code == "insufficient_quota" or status == 429:
        return NarrativeQuotaExceeded(f"Narrative service quota exhausted: {message}")
    if status == 401 or code == "invalid_api_key":
        return NarrativeAuthError(f"Narrative service rejected the API key: {message}")
    return NarrativeServiceFailure(f"Narrative service failed: {message}")


def build_chat_model(model: str, temperature: float = 0.7, base_url: Optional[str] = None) -> ChatOpenAI:
    # OPENAI_API_KEY is read from the environment (.env is loaded by Settings).
    kwargs: Dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "api_key": os.getenv("OPENAI_API_KEY"),
    }
    if base_url:
        kwargs["base_url"] = base_url
    return ChatOpenAI(**kwargs)


class BaseAgent:
    """
    Base class for the narrative agents.

    Builds a prompt from a template, sends it to the chat model, parses a JSON
    object out of the reply and validates it. Provider errors are re-raised as
    NarrativeServiceFailure subclasses; bad output raises AgentError subclasses.
    """

    name: str = "base_agent"
    prompt_file: Optional[str] = None
    system_prompt: str = ""
    default_prompt: str = ""
    output_schema: Optional[Dict[str, Any]] = None

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        llm: Any = None,
        prompts_dir: Optional[str] = None,
        temperature: float = 0.7,
        base_url: Optional[str] = None,
    ):
        self.model_name = model
        self.prompts_dir = Path(prompts_dir) if prompts_dir else None
        self.llm = llm if llm is not None else build_chat_model(model, temperature, base_url)

    def invoke(self, variables: Dict[str, Any]) -> AgentResponse:
        prompt_text = render_prompt(self._load_prompt_template(), variables)

        messages = []
        if self.system_prompt:
            messages.append(SystemMessage(content=self.system_prompt))
        messages.append(HumanMessage(content=prompt_text))

        try:
            ai_msg = self.llm.invoke(messages)
        except Exception as e:
            failure = classify_llm_error(e)
            logger.error(
                "Narrative request failed",
                extra={"agent": self.name, "reason": failure.reason, "error": str(e)},
            )
            raise failure from e

        raw = ai_msg.content if hasattr(ai_msg, "content") else str(ai_msg)
        payload = parse_json_object(raw)
        validate_with_jsonschema(payload, self.output_schema)
        return AgentResponse(payload=self._normalize(payload), raw_text=raw)

    def _normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return payload

    def _load_prompt_template(self) -> str:
        if self.prompt_file and self.prompts_dir is not None:
            path = self.prompts_dir / self.prompt_file
            if path.exists():
                return _read_text_file(path)

        if self.default_prompt.strip():
            return self.default_prompt

        raise PromptNotFound(f"No prompt_file/default_prompt defined for agent '{self.name}'.")
