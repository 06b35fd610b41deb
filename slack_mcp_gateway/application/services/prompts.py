"""
Prompt text used by the conversational controller and the bridge.

Kept in one module so the wording the model sees is easy to audit.
"""

import json
from collections.abc import Iterable

from slack_mcp_gateway.domain.model.conversation.session import HistoryEntry, HistoryRole
from slack_mcp_gateway.domain.model.mcp.tool import ToolInfo

TOOL_PROMPT_HEADER = (
    "You have access to the following tools. "
    "Analyze the user's request to determine if a tool is needed.\n\n"
)

TOOL_USAGE_RULES = (
    "TOOL USAGE INSTRUCTIONS:\n"
    "1. If a tool is appropriate AND you have ALL required arguments from the user's request, "
    "respond with ONLY the JSON object.\n"
    "2. The JSON MUST be properly formatted with no additional text before or after.\n"
    "3. Do NOT include explanations, markdown formatting, or extra text with the JSON.\n"
    "4. If any required arguments are missing, do NOT generate the JSON. "
    "Instead, ask the user for the missing information.\n"
    "5. If no tool is needed, respond naturally to the user's request.\n\n"
)

TOOL_ENVELOPE_FORMAT = (
    "\nEXACT JSON FORMAT FOR TOOL CALLS:\n"
    "{\n"
    '  "tool": "<tool_name>",\n'
    '  "args": { <arguments matching the tool\'s input schema> }\n'
    "}\n\n"
    "EXAMPLE:\n"
    "If the user asks 'Show me the files in the current directory' "
    "and 'list_dir' is an available tool:\n"
    "{\n"
    '  "tool": "list_dir",\n'
    '  "args": { "relative_workspace_path": "." }\n'
    "}\n\n"
    "IMPORTANT: Return ONLY the raw JSON object with no explanations "
    "or formatting when using a tool.\n"
)

REPROMPT_TEMPLATE = (
    "The user asked: '{question}'\n\n"
    "I used a tool and received the following result:\n"
    "```\n{result}\n```\n"
    "Please formulate a concise and helpful natural language response to the user "
    "based *only* on the user's original question and the tool result provided."
)

HISTORY_HEADER = "Previous conversation context:\n---\n"
HISTORY_FOOTER = "---\n"

_HISTORY_PREFIXES = {
    HistoryRole.USER: "User",
    HistoryRole.ASSISTANT: "Assistant",
    HistoryRole.TOOL: "Tool Result",
}

AGENT_SCHEMA_SUFFIX = "\n The input schema is: "


def _indent_schema(schema: dict) -> str:
    return json.dumps(schema or {}, indent=2).replace("\n", "\n  ")


def generate_tool_prompt(tools: Iterable[ToolInfo]) -> str:
    """Build the tool-use instructions; empty when there are no tools."""
    tools = list(tools)
    if not tools:
        return ""

    parts = [TOOL_PROMPT_HEADER, TOOL_USAGE_RULES, "Available Tools:\n"]
    for tool in tools:
        parts.append(f"\nTool Name: {tool.tool_name}\n")
        parts.append(f"  Description: {tool.description}\n")
        parts.append(f"  Input Schema (JSON):\n  {_indent_schema(tool.input_schema)}\n")
    parts.append(TOOL_ENVELOPE_FORMAT)
    return "".join(parts)


def native_tool_definitions(tools: Iterable[ToolInfo]) -> list[dict]:
    """OpenAI-style function specs for providers with native tool calling."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool.tool_name,
                "description": tool.description,
                "parameters": tool.input_schema or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def build_reprompt(question: str, result: str) -> str:
    return REPROMPT_TEMPLATE.format(question=question, result=result)


def build_history_context(entries: Iterable[HistoryEntry]) -> str:
    """Render history as ``User:``/``Assistant:``/``Tool Result:`` lines.

    Newlines inside an entry are escaped so each entry stays on one line.
    Returns an empty string for an empty history.
    """
    lines = []
    for entry in entries:
        prefix = _HISTORY_PREFIXES.get(entry.role, "User")
        content = entry.content.replace("\n", " \\n ")
        lines.append(f"{prefix}: {content}\n")
    if not lines:
        return ""
    return HISTORY_HEADER + "".join(lines) + HISTORY_FOOTER


def agent_tool_description(tool: ToolInfo) -> str:
    return f"{tool.description}{AGENT_SCHEMA_SUFFIX}{json.dumps(tool.input_schema or {})}"
