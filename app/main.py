import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app import config
from app.database import engine, Base
from app.errors import AppError
from app.models import article, comment, notification  # noqa: F401  (register tables)
from app.api.comments import router as comments_router
from app.api.notifications import router as notifications_router
from app.services.notifications import registry

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format="[%(asctime)s] %(name)s %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("app")

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Newsroom comments",
    docs_url=None if config.ENV == "prod" else "/docs",
    redoc_url=None if config.ENV == "prod" else "/redoc",
)

origins = [
    "http://localhost:5173",
    "http://localhost:8000",  # Keep for local testing
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(comments_router)
app.include_router(notifications_router)


@app.get("/health")
def health_check():
    return {"status": "ok", "open_channels": registry.active_count()}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
