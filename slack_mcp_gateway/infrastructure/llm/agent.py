"""
Conversational ReAct agent driver.

Runs a Thought/Action/Observation loop over any ``LLMProvider``'s chat
completion. The model either names a tool (``Action``/``Action Input``) or
answers (``AI:``). Tool observations are fed back until the model answers or
the iteration budget runs out.
"""

import logging
import re

from slack_mcp_gateway.domain.exceptions.mcp import MCPError
from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    AgentCallback,
    AgentTool,
    LLMProvider,
    Message,
    ProviderOptions,
    clamp_agent_iterations,
)

logger = logging.getLogger(__name__)

STOP_SEQUENCE = "\nObservation:"

FINAL_ANSWER_PATTERN = re.compile(r"AI:\s*(.*)", re.DOTALL)
ACTION_PATTERN = re.compile(
    r"Action:\s*(?P<action>.*?)\s*\n+\s*Action Input:\s*(?P<input>.*)", re.DOTALL
)

AGENT_INSTRUCTIONS = """TOOLS:
------

You have access to the following tools:

{tool_descriptions}

To use a tool, please use the following format:

Thought: Do I need to use a tool? Yes
Action: the action to take, should be one of [{tool_names}]
Action Input: the input to the action
Observation: the result of the action

When you have a response to say to the Human, or if you do not need to use a tool, you MUST use the format:

Thought: Do I need to use a tool? No
AI: [your response here]

Begin!"""

UNPARSABLE_OBSERVATION = (
    "Invalid format. Either use a tool with 'Action:' and 'Action Input:', "
    "or answer with 'AI:' after 'Thought: Do I need to use a tool? No'."
)


def format_exhausted(max_iterations: int) -> str:
    return f"Agent stopped after reaching the maximum number of iterations ({max_iterations})."


class ConversationalAgent:
    """
    Drive a provider through a conversational ReAct loop.

    Example:
        agent = ConversationalAgent(provider, tools, max_iterations=10)
        answer = await agent.run(system_prompt, "list my files", history)
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: list[AgentTool],
        max_iterations: int | None = None,
        options: ProviderOptions | None = None,
    ) -> None:
        self._provider = provider
        self._tools = {tool.name: tool for tool in tools}
        self._max_iterations = clamp_agent_iterations(max_iterations)
        base = options or ProviderOptions()
        self._options = ProviderOptions(
            model=base.model,
            temperature=base.temperature,
            max_tokens=base.max_tokens,
            target_provider=base.target_provider,
            stop=[STOP_SEQUENCE],
        )

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    def build_system_prompt(self, system_prompt: str) -> str:
        tool_descriptions = "\n".join(
            f"> {name}: {tool.description}" for name, tool in self._tools.items()
        )
        instructions = AGENT_INSTRUCTIONS.format(
            tool_descriptions=tool_descriptions or "(no tools available)",
            tool_names=", ".join(self._tools),
        )
        if system_prompt:
            return f"{system_prompt}\n\n{instructions}"
        return instructions

    async def run(
        self,
        system_prompt: str,
        user_prompt: str,
        history: list[Message],
        callback: AgentCallback | None = None,
    ) -> str:
        """
        Run the loop and return the final answer.

        Each non-final step's text is passed to ``callback``.

        Raises:
            LLMError: If the provider fails.
        """
        system = Message.system(self.build_system_prompt(system_prompt))
        scratchpad = ""

        for iteration in range(1, self._max_iterations + 1):
            prompt = f"New input: {user_prompt}\n\nThought:{scratchpad}"
            messages = [system, *history, Message.user(prompt)]
            response = await self._provider.generate_chat_completion(messages, self._options)
            step = response.content.split(STOP_SEQUENCE, 1)[0].rstrip()
            logger.debug(f"Agent step {iteration}/{self._max_iterations}: {step[:200]}")

            final = self._parse_final_answer(step)
            if final is not None:
                return final

            if callback is not None:
                await callback(step)

            observation = await self._observe(step)
            scratchpad += f" {step.strip()}\nObservation: {observation}\nThought:"

        logger.warning(f"Agent reached the maximum number of iterations ({self._max_iterations})")
        return format_exhausted(self._max_iterations)

    @staticmethod
    def _parse_final_answer(step: str) -> str | None:
        if ACTION_PATTERN.search(step):
            return None
        match = FINAL_ANSWER_PATTERN.search(step)
        if match:
            return match.group(1).strip()
        return None

    async def _observe(self, step: str) -> str:
        match = ACTION_PATTERN.search(step)
        if match is None:
            return UNPARSABLE_OBSERVATION

        action = match.group("action").strip().strip("`'\"")
        tool_input = match.group("input").strip()
        tool = self._tools.get(action)
        if tool is None:
            return (
                f"{action} is not a valid tool, try one of [{', '.join(self._tools)}]."
            )

        logger.info(f"Agent calling tool {action}")
        try:
            return await tool.call(tool_input)
        except (MCPError, LLMError) as e:
            logger.warning(f"Agent tool {action} failed: {e}")
            return f"Error: {e}"
