from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from researchflow.api.routes import ai, metrics, providers, research
from researchflow.config import settings
from researchflow.errors import ResearchFlowError
from researchflow.services import database as db
from researchflow.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    yield
    # Shutdown
    await db.close_pool()


app = FastAPI(
    title="ResearchFlow",
    description="Asynchronous AI research pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ResearchFlowError)
async def research_flow_error_handler(request: Request, exc: ResearchFlowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


# Routes
app.include_router(research.router)
app.include_router(ai.router)
app.include_router(metrics.router)
app.include_router(providers.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "researchflow"}
