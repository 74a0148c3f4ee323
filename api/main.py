import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core import settings
from core.db import Database
from core.errors import ApiError
from core.logging_setup import configure_logging
from facilities import router as facilities_router
from ingestion import router as ingestion_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create the DB pool once per process and hand it to routes via app.state.
    app.state.database = await Database.connect()
    logger.info("database_pool_ready")
    try:
        yield
    finally:
        await app.state.database.close()
        app.state.database = None


app = FastAPI(title="Health Facility Registry API", lifespan=lifespan)

CORS_ORIGIN = settings.cors_origin()

# Only the deployed frontend may call this API from the browser.
app.add_middleware(
    CORSMiddleware,
    allow_origins=[CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(facilities_router.router, prefix="/api", tags=["facilities"])
app.include_router(ingestion_router.router, prefix="/api", tags=["ingestion"])


@app.exception_handler(ApiError)
async def api_error_handler(_: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _cors_headers(request: Request) -> dict[str, str]:
    # Starlette renders the catch-all handler outside CORSMiddleware.
    if request.headers.get("origin") != CORS_ORIGIN:
        return {}
    return {
        "Access-Control-Allow-Origin": CORS_ORIGIN,
        "Access-Control-Allow-Credentials": "true",
        "Vary": "Origin",
    }


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "details": str(exc)},
        headers=_cors_headers(request),
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/")
def root() -> dict:
    return {"message": "health facility registry api"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port())
