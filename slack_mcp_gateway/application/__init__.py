"""Application layer: conversation control, the LLM-MCP bridge and the supervisor."""
