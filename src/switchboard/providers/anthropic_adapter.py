"""Anthropic SDK agent for direct Claude API access.

Uses the official Anthropic Python SDK with its internal retries disabled:
retry policy belongs to the orchestrator, so every failure surfaces here as a
ProviderError tagged with the agent name.
"""

from collections.abc import AsyncIterator, Sequence
import os
from typing import Any

import anthropic
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

DEFAULT_API_KEY_ENV = "ANTHROPIC_API_KEY"


class AnthropicAgent:
    """Agent backed by the Anthropic Messages API.

    Supports native tool use and SSE streaming. The API key comes from the
    environment variable named by ``AgentConfig.api_key_env``
    (``ANTHROPIC_API_KEY`` by default).

    Example:
        agent = AnthropicAgent(AgentConfig(name="claude", backend="anthropic",
                                           model="claude-sonnet-4-20250514"))
        result = await agent.send([Message.user("Hello!")])
    """

    def __init__(self, config: AgentConfig, *, client: Any = None) -> None:
        """Initialize the agent.

        Args:
            config: Agent configuration.
            client: Optional pre-built AsyncAnthropic client (tests).
        """
        self._config = config
        self._api_key = os.environ.get(config.api_key_env or DEFAULT_API_KEY_ENV)
        self._client = client
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
            backend="anthropic",
            model=self._config.model,
            capabilities=self._capabilities,
            has_credentials=bool(self._api_key) or self._client is not None,
        )

    def supports_tools(self) -> bool:
        return self._capabilities.supports_tools

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self._api_key,
                base_url=self._config.api_base,
                timeout=self._config.timeout,
                max_retries=0,
            )
        return self._client

    def _missing_credentials(self) -> ProviderError | None:
        if self._api_key or self._client is not None:
            return None
        env = self._config.api_key_env or DEFAULT_API_KEY_ENV
        return ProviderError(
            f"{env} not set for agent '{self.name}'",
            provider=self.name,
            status_code=401,
            retriable=False,
        )

    def _build_kwargs(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec],
    ) -> dict[str, Any]:
        """Build Messages API kwargs.

        System messages become the top-level ``system`` parameter; consecutive
        tool results are merged into a single user turn, as the API requires.
        """
        system_parts: list[str] = []
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
            elif msg.role == MessageRole.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                    "is_error": msg.is_error,
                }
                last = api_messages[-1] if api_messages else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})
            elif msg.role == MessageRole.ASSISTANT and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                blocks.extend(
                    {"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments}
                    for c in msg.tool_calls
                )
                api_messages.append({"role": "assistant", "content": blocks})
            else:
                api_messages.append({"role": msg.role.value, "content": msg.content})

        if not api_messages:
            api_messages.append({"role": "user", "content": "(empty)"})

        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": api_messages,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]
        return kwargs

    async def send(
        self,
        messages: Sequence[Message],
        *,
        tools: Sequence[ToolSpec] = (),
    ) -> Result[CompletionResponse, ProviderError]:
        """Send a conversation to the Messages API.

        Args:
            messages: The conversation so far.
            tools: Tools the model may call.

        Returns:
            Result containing the reply or a ProviderError.
        """
        missing = self._missing_credentials()
        if missing is not None:
            return Result.err(missing)

        kwargs = self._build_kwargs(messages, tools)
        log.debug(
            "anthropic.request.started",
            agent=self.name,
            model=self._config.model,
            message_count=len(kwargs["messages"]),
            tool_count=len(tools),
        )

        try:
            response = await self._get_client().messages.create(**kwargs)
        except Exception as e:
            return Result.err(self._convert_error(e))

        return Result.ok(self._parse_response(response))

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[str]:
        """Stream text deltas from the Messages API.

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

        kwargs = self._build_kwargs(messages, ())
        try:
            events = await self._get_client().messages.create(**kwargs, stream=True)
            async for event in events:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    yield event.delta.text
        except ProviderError:
            raise
        except Exception as e:
            raise self._convert_error(e) from e

    def _parse_response(self, response: Any) -> CompletionResponse:
        content = ""
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )

        if len(content) > MAX_LLM_RESPONSE_LENGTH:
            log.warning(
                "anthropic.response.truncated",
                agent=self.name,
                original_length=len(content),
                max_length=MAX_LLM_RESPONSE_LENGTH,
            )
            content = truncate_text(content, MAX_LLM_RESPONSE_LENGTH)

        usage = response.usage
        return CompletionResponse(
            content=content,
            model=response.model or self._config.model,
            usage=UsageInfo(
                prompt_tokens=usage.input_tokens if usage else 0,
                completion_tokens=usage.output_tokens if usage else 0,
                total_tokens=(usage.input_tokens + usage.output_tokens) if usage else 0,
            ),
            finish_reason=response.stop_reason or "end_turn",
            tool_calls=tuple(tool_calls),
        )

    def _convert_error(self, exc: Exception) -> ProviderError:
        """Map Anthropic SDK exceptions to ProviderError."""
        if isinstance(exc, anthropic.AuthenticationError):
            log.warning("anthropic.request.failed.auth", agent=self.name)
            return ProviderError(
                "Authentication failed - check the API key",
                provider=self.name,
                status_code=401,
                retriable=False,
            )

        if isinstance(exc, anthropic.RateLimitError):
            log.warning("anthropic.request.failed.rate_limit", agent=self.name)
            return ProviderError("Rate limit exceeded", provider=self.name, status_code=429)

        if isinstance(exc, anthropic.APIStatusError):
            log.warning(
                "anthropic.request.failed.api_error",
                agent=self.name,
                status_code=exc.status_code,
                error=str(exc),
            )
            return ProviderError.from_exception(exc, provider=self.name)

        if isinstance(exc, anthropic.APIConnectionError):
            log.warning("anthropic.request.failed.connection", agent=self.name, error=str(exc))
            return ProviderError.from_exception(exc, provider=self.name, retriable=True)

        log.exception("anthropic.request.failed.unexpected", agent=self.name, error=str(exc))
        error = ProviderError(
            f"Unexpected error: {exc}",
            provider=self.name,
            retriable=False,
            details={"original_exception": type(exc).__name__},
        )
        error.__cause__ = exc
        return error

    async def aclose(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
