"""
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from konver.core.config import settings
from konver.core.database import engine, Base
from konver.core.exceptions import KonverError
from konver.integrations.evolution_client import EvolutionClient, EvolutionConfig
from konver.routes import bot_feedback, assistant_chat, whatsapp
# Import all models to register them with SQLAlchemy
from konver.models import Bot, MessageFeedback, ExternalConversation, ConversationMessage

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.log_config_summary()

    # Create all tables
    Base.metadata.create_all(bind=engine)

    app.state.http_client = httpx.AsyncClient()
    app.state.evolution_client = EvolutionClient(
        EvolutionConfig(
            api_url=settings.EVOLUTION_API_URL,
            api_key=settings.EVOLUTION_API_KEY,
            webhook_url=settings.EVOLUTION_WEBHOOK_URL,
            timeout=settings.EVOLUTION_TIMEOUT,
        ),
        client=app.state.http_client,
    )
    try:
        yield
    finally:
        await app.state.http_client.aclose()


# Initialize FastAPI app
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan
)

BOT_SCOPED_PREFIX = "/bot-feedback-api"


# Registered before CORS so CORS headers wrap its 400 responses
@app.middleware("http")
async def require_bot_id(request: Request, call_next):
    """Reject feedback API calls without a bot id before routing (404/405 come after)"""
    if (
        request.url.path.startswith(BOT_SCOPED_PREFIX)
        and request.method != "OPTIONS"
        and not (request.query_params.get("bot_id") or request.headers.get("x-bot-id"))
    ):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "bot_id is required"}
        )
    return await call_next(request)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-bot-id"],
)


@app.exception_handler(KonverError)
async def konver_error_handler(request: Request, exc: KonverError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_errors(exc)}
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    messages = {
        status.HTTP_404_NOT_FOUND: "Endpoint not found",
        status.HTTP_405_METHOD_NOT_ALLOWED: "Method not allowed",
    }
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": messages.get(exc.status_code, str(exc.detail))},
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Error in {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "message": str(exc) or "Unknown error"}
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without the raw input/context objects"""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# Include routers
app.include_router(bot_feedback.router)
app.include_router(assistant_chat.router)
app.include_router(whatsapp.router)


@app.get("/", tags=["root"])
def root():
    """Root endpoint"""
    return {
        "service": settings.API_TITLE,
        "version": settings.API_VERSION,
        "status": "running"
    }


@app.get("/health", tags=["health"])
def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
