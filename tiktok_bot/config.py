import os

from dotenv import load_dotenv

# Real environment wins; .env only fills in what is missing.
load_dotenv()

# -------------------------
# Telegram
# -------------------------
BOT_TOKEN = (os.getenv("BOT_TOKEN") or os.getenv("TOKEN") or "").strip()
BOT_USERNAME = os.getenv("BOT_USERNAME", "").strip().lstrip("@")
INLINE_CACHE_TIME = int(os.getenv("INLINE_CACHE_TIME", "300"))
HEARTBEAT_INTERVAL_SECONDS = int(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "300"))
MAX_BOT_FILE_BYTES = int(os.getenv("MAX_BOT_FILE_BYTES", str(50 * 1024 * 1024)))
MEDIA_GROUP_SIZE = 10
START_TOKEN_PREFIX = "tt_"

# "photos" sends slideshows as media groups, "video" composes them with ffmpeg.
SLIDESHOW_MODE = os.getenv("SLIDESHOW_MODE", "photos").strip().lower()

# -------------------------
# Token cache
# -------------------------
TOKEN_TTL_SECONDS = float(os.getenv("TOKEN_TTL_SECONDS", "600"))
CACHE_SWEEP_INTERVAL_SECONDS = int(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "60"))

# -------------------------
# Resolver / downloads
# -------------------------
RESOLVER_API_URL = os.getenv("RESOLVER_API_URL", "https://www.tikwm.com/api/")
RESOLVER_TIMEOUT_SECONDS = float(os.getenv("RESOLVER_TIMEOUT_SECONDS", "15"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "20"))
MAX_SLIDESHOW_IMAGES = int(os.getenv("MAX_SLIDESHOW_IMAGES", "35"))
CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

# -------------------------
# Encoder
# -------------------------
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
ENCODE_TIMEOUT_SECONDS = float(os.getenv("ENCODE_TIMEOUT_SECONDS", "120"))
DEFAULT_SLIDESHOW_SECONDS = 10
SLIDESHOW_WIDTH = 480
SLIDESHOW_HEIGHT = 854
