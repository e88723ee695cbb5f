import logging
from functools import lru_cache
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

# AI layout integration flags
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
USE_AI_LAYOUT = (os.getenv("USE_AI_LAYOUT", "true").strip().lower() in ("1", "true", "yes", "on"))
LAYOUT_MODEL = os.getenv("LAYOUT_MODEL", "gpt-4o")
LAYOUT_TEMPERATURE = float(os.getenv("LAYOUT_TEMPERATURE", "0.4"))
LAYOUT_TIMEOUT_S = float(os.getenv("LAYOUT_TIMEOUT_S", "45"))
try:
    AI_LAYOUT_CACHE_TTL_S = float(os.getenv("AI_LAYOUT_CACHE_TTL_S", "600"))
except ValueError:
    AI_LAYOUT_CACHE_TTL_S = 600.0

# Rendering defaults
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "85"))
RENDER_WORKERS = max(1, int(os.getenv("RENDER_WORKERS", "4")))
DEFAULT_FONT_FAMILY = os.getenv("DEFAULT_FONT_FAMILY", "Inter, 'Helvetica Neue', Helvetica, Arial, sans-serif")


@lru_cache(maxsize=None)
def configure_cairo_dll_dir() -> bool:
    """Windows: help CairoSVG find native cairo DLLs without global PATH edits.

    Set CAIRO_DLL_DIR to the folder that contains cairo-2.dll. Returns True when a
    directory was added to the DLL search path.
    """
    if os.name != "nt" or not hasattr(os, "add_dll_directory"):
        return False
    cairo_dll_dir = os.getenv("CAIRO_DLL_DIR", "").strip()
    candidates = [cairo_dll_dir] if cairo_dll_dir else []
    candidates += [
        r"C:\\Program Files\\GTK3-Runtime Win64\\bin",
        r"C:\\msys64\\mingw64\\bin",
    ]
    for path in candidates:
        if path and os.path.isdir(path):
            try:
                os.add_dll_directory(path)
            except OSError as e:
                logger.debug(f"Skipping Cairo DLL directory {path}: {e}")
                continue
            logger.info(f"Added Cairo DLL path: {path}")
            return True
    logger.debug("No Cairo DLL directory added automatically; set CAIRO_DLL_DIR if rendering fails.")
    return False


def configure_logging(level: str = "") -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
