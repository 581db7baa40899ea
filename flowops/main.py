from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from flowops.core.config import settings
from flowops.core.errors import FlowOpsError
from flowops.api.endpoints import versions, promotions, deployments, sse, webhooks, health
from flowops.services.database import db_service
from flowops.services.deployment_coordinator import deployment_coordinator
import logging

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(
    versions.router,
    prefix=settings.API_V1_PREFIX,
    tags=["versions"]
)

app.include_router(
    promotions.router,
    prefix=settings.API_V1_PREFIX,
    tags=["promotions"]
)

app.include_router(
    deployments.router,
    prefix=settings.API_V1_PREFIX,
    tags=["deployments"]
)

app.include_router(
    webhooks.router,
    prefix=settings.API_V1_PREFIX,
    tags=["webhooks"]
)

app.include_router(
    sse.router,
    prefix=f"{settings.API_V1_PREFIX}/sse",
    tags=["sse"]
)

app.include_router(
    health.router,
    prefix="/health",
    tags=["health"]
)


@app.get("/")
async def root():
    return {
        "message": settings.PROJECT_NAME,
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.on_event("startup")
async def startup_event():
    """
    Prepare storage and fail deployments left pending/running by a previous
    process, which can never complete now.
    """
    if settings.AUTO_CREATE_TABLES:
        db_service.create_tables()

    try:
        recovered = await deployment_coordinator.recover_interrupted()
        logger.info(f"Startup recovery complete: {recovered} interrupted deployments marked failed")
    except Exception as e:
        logger.error(f"Failed to recover interrupted deployments on startup: {str(e)}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    await deployment_coordinator.shutdown()


@app.exception_handler(FlowOpsError)
async def flowops_exception_handler(request: Request, exc: FlowOpsError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for anything the endpoints did not translate.
    """
    # Skip HTTPExceptions as they are already handled
    if isinstance(exc, HTTPException):
        raise exc

    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error_type": type(exc).__name__
        }
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("flowops.main:app", host="0.0.0.0", port=4000, reload=True)
