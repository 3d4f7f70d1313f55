"""Edge logic and routing for the agent state machine."""

from flowagent.graphs.state import AgentNode, AgentRunState, ExecutionContext
from flowagent.utils.logging import get_logger

logger = get_logger(__name__)


def route_after_llm_check(state: AgentRunState) -> AgentNode:
    """Route from the after-LLM check.

    Back to the agent when a rescue or hook asked for it, to the tools when
    the latest AI message requested any, otherwise end.
    """
    if state.continue_to_agent:
        return AgentNode.AGENT

    last_message = state.last_ai_message()
    if last_message is not None and last_message.tool_calls:
        return AgentNode.TOOLS
    return AgentNode.END


def route_after_tools(state: AgentRunState, execution_context: ExecutionContext | None = None) -> AgentNode:
    """Route from tool execution.

    Ends when a hook asked to stop or a delegated run is waiting for approval.
    """
    if state.stop_after_tools:
        return AgentNode.END

    if execution_context is not None and execution_context.pending_approval is not None:
        logger.info(f"Pending approval for {execution_context.pending_approval.tool_name}, stopping")
        state.stop_after_tools = True
        return AgentNode.END

    return AgentNode.AGENT
