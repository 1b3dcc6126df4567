from dotenv import load_dotenv

# Load environment variables BEFORE any imports that use them (e.g. Firebase)
load_dotenv()

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_job_runner
from api.routers import documentation, jobs, pull_requests, repository, visual_tree
from common.config import get_settings
from common.logging_config import setup_logging
import uvicorn


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Configures logging on startup; on shutdown cancels generation calls still
    in flight. Their jobs are failed by the staleness check on a later poll.
    """
    setup_logging(get_settings().log_level)
    yield
    runner = app.dependency_overrides.get(get_job_runner, get_job_runner)()
    await runner.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Repository Artifact Job API",
    description="""
    Long-running, AI-generated artifacts about attached repositories.

    ## Features

    * **Documentation** - repository, module, file or prompt-driven documentation
    * **Visual Tree** - dependency / structure visualization, cancellable
    * **Pull Request Analysis** - risk analysis plus inline review comments posted to GitHub

    Every generation request returns immediately with a job id; poll the
    matching status endpoint for the result.
    """,
    version="0.3.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    documentation.router,
    prefix="/api/v1/documentation",
    tags=["Documentation"]
)

app.include_router(
    visual_tree.router,
    prefix="/api/v1/visual-tree",
    tags=["Visual Tree"]
)

app.include_router(
    pull_requests.router,
    prefix="/api/v1/pull-requests",
    tags=["Pull Requests"]
)

app.include_router(
    jobs.router,
    prefix="/api/v1/jobs",
    tags=["Jobs"]
)

app.include_router(
    repository.router,
    prefix="/api/v1/repos",
    tags=["Repository"]
)


@app.get("/api/v1/health", tags=["Health"])
async def health():
    return {"status": "healthy"}


def run_server():
    """
    Run the API server.

    This function is used as an entry point for the CLI command.
    """
    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )


if __name__ == "__main__":
    run_server()
