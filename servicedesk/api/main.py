from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from servicedesk import __version__
from servicedesk.core.config import get_settings
from servicedesk.core.logger import setup_logger
from servicedesk.api.routers import changes, approvals, routing, health

settings = get_settings()

setup_logger(
    "servicedesk",
    log_dir=settings.log_dir,
    level=settings.log_level,
    file_logging=settings.log_to_file,
)

app = FastAPI(
    title=settings.app_name,
    description="Service desk change management with multilevel approvals",
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(changes.router, prefix="/api")
app.include_router(approvals.router, prefix="/api")
app.include_router(routing.router, prefix="/api")
app.include_router(health.router)


@app.get("/")
async def root():
    return {
        "name": settings.app_name,
        "version": __version__,
        "docs": "/docs" if settings.debug else None,
    }
