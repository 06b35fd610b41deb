from slack_mcp_gateway.infrastructure.llm.litellm.litellm_provider import LiteLLMProvider

__all__ = ["LiteLLMProvider"]
