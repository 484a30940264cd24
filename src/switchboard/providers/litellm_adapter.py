"""LiteLLM agent for unified provider access.

This module provides the LiteLLMAgent class that implements the Agent
protocol using LiteLLM, so any litellm-routable model (OpenAI, OpenRouter,
Gemini, local endpoints...) can sit behind the orchestrator.
"""

from collections.abc import AsyncIterator, Sequence
import json
import os
from typing import Any

import litellm
import structlog

from switchboard.config.models import AgentConfig
from switchboard.core.errors import ProviderError, UnsupportedCapability
from switchboard.core.security import MAX_LLM_RESPONSE_LENGTH, truncate_text
from switchboard.core.types import Result
from switchboard.providers.base import (
    AgentCapabilities,
    AgentDescriptor,
    CompletionResponse,
    Message,
    MessageRole,
    ToolCall,
    ToolSpec,
    UsageInfo,
)

log = structlog.get_logger(__name__)

# Transport-level failures: no HTTP status, always worth retrying
TRANSIENT_EXCEPTIONS = (
    litellm.Timeout,
    litellm.APIConnectionError,
)

# Model prefix -> default credential variable
_PREFIX_KEY_ENV: tuple[tuple[str, str], ...] = (
    ("openrouter/", "OPENROUTER_API_KEY"),
    ("anthropic/", "ANTHROPIC_API_KEY"),
    ("claude", "ANTHROPIC_API_KEY"),
    ("openai/", "OPENAI_API_KEY"),
    ("gpt", "OPENAI_API_KEY"),
    ("gemini/", "GEMINI_API_KEY"),
)


def default_key_env(model: str) -> str | None:
    """Return the conventional API key variable for a model, if any.

    Models without a known prefix (e.g. ``ollama/llama3``) need no key.
    """
    for prefix, env in _PREFIX_KEY_ENV:
        if model.startswith(prefix):
            return env
    return None


class LiteLLMAgent:
    """Agent using LiteLLM for multi-provider access.

    API keys are read from ``AgentConfig.api_key_env`` or, when unset, from
    the conventional variable for the model prefix (``OPENAI_API_KEY`` for
    ``openai/...``, ``OPENROUTER_API_KEY`` for ``openrouter/...``).

    Example:
        agent = LiteLLMAgent(AgentConfig(name="gpt", model="openai/gpt-4o"))
        result = await agent.send([Message.user("Hello!")])
    """

    def __init__(self, config: AgentConfig) -> None:
        self._config = config
        self._key_env = config.api_key_env or default_key_env(config.model)
        self._api_key = os.environ.get(self._key_env) if self._key_env else None
        self._capabilities = AgentCapabilities(
            supports_tools=True if config.supports_tools is None else config.supports_tools,
            supports_streaming=(
                True if config.supports_streaming is None else config.supports_streaming
            ),
        )

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def descriptor(self) -> AgentDescriptor:
        return AgentDescriptor(
            name=self._config.name,
            backend="litellm",
            model=self._config.model,
            capabilities=self._capabilities,
            has_credentials=self._key_env is None or bool(self._api_key),
        )

    def supports_tools(self) -> bool:
        return self._capabilities.supports_tools

    def _missing_credentials(self) -> ProviderError | None:
        if self._key_env is None or self._api_key:
            return None
        return ProviderError(
            f"{self._key_env} not set for agent '{self.name}'",
            provider=self.name,
            status_code=401,
            retriable=False,
        )

    @staticmethod
    def _to_openai_message(msg: Message) -> dict[str, Any]:
        if msg.role == MessageRole.TOOL:
            return {
                "role": "tool",
                "tool_call_id": msg.tool_call_id,
                "name": msg.name,
                "content": msg.content,
            }
        if msg.role == MessageRole.ASSISTANT and msg.tool_calls:
            return {
                "role": "assistant",
                "content": msg.content or None,
                "tool_calls": [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                    }
                    for c in msg.tool_calls
                ],
            }
        return {"role": msg.role.value, "content": msg.content}

    def _build_completion_kwargs(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec],
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [self._to_openai_message(m) for m in messages],
            "temperature": self._config.temperature,
            "max_tokens": self._config.max_tokens,
            "timeout": self._config.timeout,
            "num_retries": 0,
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.input_schema,
                    },
                }
                for t in tools
            ]
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._config.api_base:
            kwargs["api_base"] = self._config.api_base
        return kwargs

    async def send(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolSpec] = (),
    ) -> Result[CompletionResponse, ProviderError]:
        """Make a completion request through LiteLLM.

        Every expected failure is converted to ``Result.err(ProviderError)``.

        Args:
            messages: The conversation messages to send.
            tools: Tools the model may call.

        Returns:
            Result containing either the completion response or a ProviderError.
        """
        missing = self._missing_credentials()
        if missing is not None:
            return Result.err(missing)

        kwargs = self._build_completion_kwargs(messages, tools)
        log.debug(
            "llm.request.started",
            agent=self.name,
            model=self._config.model,
            message_count=len(messages),
            tool_count=len(tools),
        )

        try:
            response = await litellm.acompletion(**kwargs)
        except Exception as e:
            return Result.err(self._convert_error(e))

        log.debug(
            "llm.request.completed",
            agent=self.name,
            finish_reason=response.choices[0].finish_reason,
        )
        return self._parse_response(response)

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        """Stream text deltas through LiteLLM.

        Raises:
            UnsupportedCapability: If streaming is disabled for this agent.
            ProviderError: On missing credentials or upstream failure.
        """
        if not self._capabilities.supports_streaming:
            raise UnsupportedCapability(
                f"Agent '{self.name}' does not support streaming",
                provider=self.name,
                capability="streaming",
            )
        missing = self._missing_credentials()
        if missing is not None:
            raise missing

        kwargs = self._build_completion_kwargs(messages, ())
        try:
            chunks = await litellm.acompletion(**kwargs, stream=True)
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        except ProviderError:
            raise
        except Exception as e:
            raise self._convert_error(e) from e

    def _parse_response(self, response: Any) -> Result[CompletionResponse, ProviderError]:
        choice = response.choices[0]
        usage = response.usage
        content = choice.message.content or ""

        if len(content) > MAX_LLM_RESPONSE_LENGTH:
            log.warning(
                "llm.response.truncated",
                agent=self.name,
                original_length=len(content),
                max_length=MAX_LLM_RESPONSE_LENGTH,
            )
            content = truncate_text(content, MAX_LLM_RESPONSE_LENGTH)

        tool_calls: list[ToolCall] = []
        for call in getattr(choice.message, "tool_calls", None) or []:
            raw_args = call.function.arguments or "{}"
            try:
                arguments = json.loads(raw_args)
            except json.JSONDecodeError:
                log.warning(
                    "llm.response.malformed_tool_call",
                    agent=self.name,
                    tool=call.function.name,
                )
                return Result.err(
                    ProviderError(
                        f"Malformed arguments for tool call '{call.function.name}'",
                        provider=self.name,
                        retriable=False,
                        details={"arguments": truncate_text(raw_args, 200)},
                    )
                )
            if not isinstance(arguments, dict):
                arguments = {"value": arguments}
            tool_calls.append(ToolCall(id=call.id, name=call.function.name, arguments=arguments))

        return Result.ok(
            CompletionResponse(
                content=content,
                model=response.model or self._config.model,
                usage=UsageInfo(
                    prompt_tokens=usage.prompt_tokens if usage else 0,
                    completion_tokens=usage.completion_tokens if usage else 0,
                    total_tokens=usage.total_tokens if usage else 0,
                ),
                finish_reason=choice.finish_reason or "stop",
                tool_calls=tuple(tool_calls),
                raw_response=response.model_dump() if hasattr(response, "model_dump") else {},
            )
        )

    def _convert_error(self, exc: Exception) -> ProviderError:
        """Map LiteLLM exceptions to ProviderError."""
        if isinstance(exc, litellm.AuthenticationError):
            log.warning("llm.request.failed.auth_error", agent=self.name, error=str(exc))
            return ProviderError(
                "Authentication failed - check API key",
                provider=self.name,
                status_code=401,
                retriable=False,
                details={"original_exception": type(exc).__name__},
            )

        if isinstance(exc, TRANSIENT_EXCEPTIONS):
            log.warning("llm.request.failed.transport", agent=self.name, error=str(exc))
            return ProviderError.from_exception(exc, provider=self.name, retriable=True)

        # RateLimitError, BadRequestError, ServiceUnavailableError... all carry a status
        if isinstance(getattr(exc, "status_code", None), int):
            log.warning(
                "llm.request.failed.api_error",
                agent=self.name,
                error=str(exc),
                status_code=getattr(exc, "status_code", None),
            )
            return ProviderError.from_exception(exc, provider=self.name)

        log.exception("llm.request.failed.unexpected", agent=self.name, error=str(exc))
        return ProviderError.from_exception(exc, provider=self.name, retriable=False)

    async def aclose(self) -> None:
        """LiteLLM manages its own connection pool; nothing to release."""
