import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends, Security, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyQuery, APIKeyHeader
from starlette.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from mediarelay.configs import settings
from mediarelay.errors import RelayError
from mediarelay.metadata import metadata_holder
from mediarelay.routes import api_router, media_router, mirror_router

logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await metadata_holder.initialize()
    yield
    await metadata_holder.close()


app = FastAPI(lifespan=lifespan)
api_password_query = APIKeyQuery(name="api_password", auto_error=False)
api_password_header = APIKeyHeader(name="api_password", auto_error=False)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["content-range", "content-length", "accept-ranges"],
)


async def verify_api_key(api_key: str = Security(api_password_query), api_key_alt: str = Security(api_password_header)):
    """
    Verifies the API key for the request.

    Args:
        api_key (str): The API key to validate.
        api_key_alt (str): The alternative API key to validate.

    Raises:
        HTTPException: If the API key is invalid.
    """
    if not settings.api_password:
        return

    if api_key == settings.api_password or api_key_alt == settings.api_password:
        return

    raise HTTPException(status_code=403, detail="Could not validate credentials")


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    logger.warning(f"{request.url.path} failed with {exc.error}: {exc.message}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(f"{error['loc'][-1]}: {error['msg']}" for error in exc.errors())
    return JSONResponse({"error": "invalid_request", "message": message}, status_code=400)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "metadata_client": metadata_holder.state.value}


app.include_router(media_router, prefix="/media", tags=["media"], dependencies=[Depends(verify_api_key)])
app.include_router(mirror_router, prefix="/mirror", tags=["mirror"], dependencies=[Depends(verify_api_key)])
app.include_router(api_router, prefix="/api", tags=["metadata"], dependencies=[Depends(verify_api_key)])

if settings.static_directory:
    app.mount("/", StaticFiles(directory=settings.static_directory, html=True), name="static")


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level="info")


if __name__ == "__main__":
    run()
