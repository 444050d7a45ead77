"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from webpconv.api.routes import router
from webpconv.config import CORS_ORIGINS, STATIC_DIR, logger as config_logger
from webpconv.conversion.service import get_conversion_service

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_conversion_service()
    config_logger.info("WebP conversion server started")
    yield
    config_logger.info("WebP conversion server shutting down")


app = FastAPI(
    title="WebP Converter API",
    description="Convert JPEG, PNG, BMP and TIFF uploads to WebP, streamed back as they encode.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Converted-Filename"],
)
app.include_router(router)

# Optional test page
if STATIC_DIR.is_dir():
    app.mount("/front", StaticFiles(directory=STATIC_DIR, html=True), name="front")

    @app.get("/", include_in_schema=False)
    def index():
        return RedirectResponse("/front/")


if __name__ == "__main__":
    import uvicorn
    from webpconv.config import HOST, PORT
    uvicorn.run("webpconv.main:app", host=HOST, port=PORT)
