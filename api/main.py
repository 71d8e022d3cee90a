import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import create_indexes
from .exceptions import CaseManagementError
from .routers import auth, cases, incidents

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await create_indexes()
    except Exception as e:
        logger.error(f"Could not ensure database indexes: {e}")
    yield


app = FastAPI(
    title="WHS Case Management API",
    description="Incident approval and case lifecycle for workplace injury management",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CaseManagementError)
async def case_management_error_handler(request: Request, exc: CaseManagementError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(auth.router, prefix="/api", tags=["Auth"])
app.include_router(incidents.router, prefix="/api", tags=["Incidents"])
app.include_router(cases.router, prefix="/api", tags=["Cases"])


@app.get("/api/health", tags=["Health"])
async def health():
    return {"status": "ok"}
