"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowagent import __version__
from flowagent.api.endpoints import router
from flowagent.utils.logging import setup_logging

setup_logging()

app = FastAPI(
    title="flowagent",
    description=(
        "Tool-augmented conversational agent runtime with multi-provider models, "
        "capability delegation and backup-model fallback."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    tags_metadata=[
        {
            "name": "Agent",
            "description": "Run the agent against a message with registered tools and capabilities.",
        },
        {
            "name": "Registry",
            "description": "Inspect the pre-registered tools and capabilities.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("flowagent.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
