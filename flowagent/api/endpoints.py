"""API endpoints for the agent service."""

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from flowagent import __version__
from flowagent.capabilities.registry import get_capability_registry
from flowagent.config import EnvCredentialResolver
from flowagent.models.agent import AgentResult
from flowagent.models.api import AgentRunRequest, CapabilityInfo, HealthResponse, ToolInfo
from flowagent.services.agent import AIAgent
from flowagent.tools.registry import get_tool_registry
from flowagent.utils.logging import get_logger, preview

logger = get_logger(__name__)

router = APIRouter()

credential_resolver = EnvCredentialResolver()


@router.post("/agent/run", response_model=AgentResult, tags=["Agent"])
async def run_agent(request: AgentRunRequest) -> AgentResult:
    """Run the agent once and return its result.

    Run failures are reported in the body with ``success=false``; only
    malformed requests produce an error status.
    """
    try:
        agent_request = request.to_agent_request(credential_resolver.resolve(request.credentials))
    except (ValidationError, ValueError) as e:
        logger.warning(f"Invalid agent request: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(f"Running agent '{agent_request.name}' for message: {preview(agent_request.message)}")
    result = await AIAgent(agent_request).execute()
    logger.info(f"Agent run finished: success={result.success}, iterations={result.iterations}")
    return result


@router.get("/tools", response_model=list[ToolInfo], tags=["Registry"])
async def list_tools() -> list[ToolInfo]:
    """List the pre-registered tool bubbles."""
    registry = get_tool_registry()
    tools = []
    for name in registry.get_tool_names():
        bubble = registry.get_tool(name)
        if bubble is None:
            continue
        tools.append(ToolInfo(name=bubble.name, description=bubble.description, credential_types=bubble.credential_types))
    return tools


@router.get("/capabilities", response_model=list[CapabilityInfo], tags=["Registry"])
async def list_capabilities() -> list[CapabilityInfo]:
    """List visible registered capabilities."""
    return [
        CapabilityInfo(
            id=metadata.id,
            name=metadata.name,
            description=metadata.description,
            tools=[t.name for t in metadata.tools],
            required_credentials=metadata.required_credentials,
        )
        for metadata in get_capability_registry().list_metadata()
    ]


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
