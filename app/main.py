from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.deps import background_tasks
from app.api.routes import search
from app.config import settings
from app.llm_client import close_client
from app.models.schemas import ErrorResponse
from app.research_core.models.errors import ScrapeJobTimeoutError, SearchTimeoutError


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let billing and request-log tasks finish before the loop closes.
    await background_tasks.drain()
    await close_client()


app = FastAPI(
    title="Agentic Search",
    description="Iterative web search with query expansion, rank fusion and answer evaluation",
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


def _error(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(exclude_none=True))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    return _error(400, ErrorResponse(error="Invalid request body", details=details))


@app.exception_handler(SearchTimeoutError)
@app.exception_handler(ScrapeJobTimeoutError)
async def timeout_error_handler(request: Request, exc: SearchTimeoutError | ScrapeJobTimeoutError):
    return _error(408, ErrorResponse(error="Request timed out", code=exc.code))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, ErrorResponse(error=str(exc.detail)))


# Routes
app.include_router(search.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "agentic-search"}
