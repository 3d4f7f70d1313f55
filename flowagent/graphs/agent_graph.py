"""Driver for the agent state machine."""

from langchain_core.messages import BaseMessage

from flowagent.errors import IterationLimitError
from flowagent.graphs.edges import route_after_llm_check, route_after_tools
from flowagent.graphs.nodes import AgentRuntime, after_llm_check_node, agent_node, tools_node
from flowagent.graphs.state import AgentNode, AgentRunState
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)


class AgentStateMachine:
    """Runs AGENT -> AFTER_LLM_CHECK -> (TOOLS -> AGENT)* -> END.

    Every node execution counts as one step; exceeding ``max_iterations``
    steps raises IterationLimitError.
    """

    def __init__(self, runtime: AgentRuntime, max_iterations: int):
        self.runtime = runtime
        self.max_iterations = max_iterations

    def new_state(self, messages: list[BaseMessage]) -> AgentRunState:
        return AgentRunState(messages=list(messages))

    async def step(self, node: AgentNode, state: AgentRunState) -> AgentNode:
        """Execute ``node`` and return the node to run next."""
        match node:
            case AgentNode.AGENT:
                await agent_node(state, self.runtime)
                return AgentNode.AFTER_LLM_CHECK
            case AgentNode.AFTER_LLM_CHECK:
                await after_llm_check_node(state, self.runtime)
                return route_after_llm_check(state)
            case AgentNode.TOOLS:
                await tools_node(state, self.runtime)
                return route_after_tools(state, self.runtime.execution_context)
        raise ValueError(f"Cannot step from node {node}")

    async def run(self, state: AgentRunState) -> AgentRunState:
        """Drive ``state`` to completion.

        The state is mutated in place, so a caller holding it still sees the
        partial conversation when this raises.
        """
        node = AgentNode.AGENT
        while node is not AgentNode.END:
            state.steps += 1
            if state.steps > self.max_iterations:
                logger.warning(f"Step limit of {self.max_iterations} reached")
                raise IterationLimitError(self.max_iterations)
            logger.debug(f"Step {state.steps}: {node}")
            node = await self.step(node, state)

        logger.info(
            f"Agent run completed: {state.iterations} model turns, {state.tool_call_count} tool calls, "
            f"{len(state.messages)} messages"
        )
        return state
