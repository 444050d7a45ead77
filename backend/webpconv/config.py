"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Static test page (served at / when the directory exists)
STATIC_DIR = Path(os.getenv("STATIC_DIR", str(BASE_DIR / "front")))

# Upload gate: extensions accepted before any decode attempt
SUPPORTED_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp", ".tiff", ".tif")
OUTPUT_EXTENSION = ".webp"
OUTPUT_MEDIA_TYPE = "image/webp"

# Encoder defaults (env overrides)
DEFAULT_QUALITY = float(os.getenv("DEFAULT_QUALITY", "80"))
DEFAULT_LOSSLESS = os.getenv("DEFAULT_LOSSLESS", "false").strip().lower() in ("true", "1")
WEBP_METHOD = int(os.getenv("WEBP_METHOD", "4"))

# Limits
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "32"))
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024
# Decompression bomb guard; Pillow's own default
MAX_IMAGE_PIXELS = int(os.getenv("MAX_IMAGE_PIXELS", "89478485"))

# Sniffing and streaming
SNIFF_LENGTH = int(os.getenv("SNIFF_LENGTH", "512"))
PIPE_CHUNK_SIZE = int(os.getenv("PIPE_CHUNK_SIZE", str(64 * 1024)))
PIPE_MAX_CHUNKS = int(os.getenv("PIPE_MAX_CHUNKS", "16"))
PIPE_POLL_INTERVAL = float(os.getenv("PIPE_POLL_INTERVAL", "0.1"))

# Concurrency: one encoder task per in-flight conversion
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "10080"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("webpconv")
