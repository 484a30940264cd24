"""Provider agents for Switchboard.

Every language-model provider is wrapped behind the Agent protocol.
AnthropicAgent talks to the Claude API directly; LiteLLMAgent reaches any
litellm-routable model.
"""

from switchboard.providers.anthropic_adapter import AnthropicAgent
from switchboard.providers.base import (
    Agent,
    AgentCapabilities,
    AgentDescriptor,
    CompletionResponse,
    Message,
    MessageRole,
    ToolCall,
    ToolSpec,
    UsageInfo,
)
from switchboard.providers.factory import BACKENDS, create_agent, create_agents
from switchboard.providers.litellm_adapter import LiteLLMAgent

__all__ = [
    # Protocol
    "Agent",
    # Models
    "AgentCapabilities",
    "AgentDescriptor",
    "CompletionResponse",
    "Message",
    "MessageRole",
    "ToolCall",
    "ToolSpec",
    "UsageInfo",
    # Implementations
    "AnthropicAgent",
    "LiteLLMAgent",
    # Factory
    "BACKENDS",
    "create_agent",
    "create_agents",
]
