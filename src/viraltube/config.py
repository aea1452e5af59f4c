import os
from dotenv import load_dotenv

load_dotenv()

# Gemini API Configuration
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_BASE_URL = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-3-pro-preview")
GEMINI_IMAGE_MODEL = os.getenv("GEMINI_IMAGE_MODEL", "gemini-3-pro-image-preview")
GEMINI_TTS_MODEL = os.getenv("GEMINI_TTS_MODEL", "gemini-2.5-flash-preview-tts")
GEMINI_VIDEO_MODEL = os.getenv("GEMINI_VIDEO_MODEL", "veo-3.1-fast-generate-preview")
GEMINI_REQUEST_TIMEOUT = int(os.getenv("GEMINI_REQUEST_TIMEOUT", "300"))

# TTS Configuration
# Prebuilt Gemini voices: Puck, Charon, Kore, Fenrir, Aoede
VOICE_NAME = os.getenv("VOICE_NAME", "Puck")
TTS_SAMPLE_RATE = 24000  # Gemini TTS returns 16-bit mono PCM at 24 kHz

# Video Configuration (16:9 landscape)
VIDEO_WIDTH = 1280
VIDEO_HEIGHT = 720
FPS = 30
VIDEO_BITRATE = os.getenv("VIDEO_BITRATE", "5000k")

# YouTube Upload Configuration
YOUTUBE_CREDENTIALS_FILE = os.getenv("YOUTUBE_CREDENTIALS_FILE", "client_secret.json")
YOUTUBE_TOKEN_FILE = os.getenv("YOUTUBE_TOKEN_FILE", "token.pickle")
YOUTUBE_PRIVACY_STATUS = os.getenv("YOUTUBE_PRIVACY_STATUS", "public")  # public, unlisted, private
YOUTUBE_CATEGORY_ID = os.getenv("YOUTUBE_CATEGORY_ID", "27")  # 27 = Education

# Pipeline Configuration
AUTONOMOUS_MODE = os.getenv("AUTONOMOUS_MODE", "true").lower() == "true"  # Loop forever, skip review
TOPIC_HISTORY_FILE = os.getenv("TOPIC_HISTORY_FILE", "topic_history.json")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Output directories
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output")
TEMP_DIR = os.getenv("TEMP_DIR", "temp")


def ensure_directories() -> None:
    """Create output/temp directories if they don't exist."""
    os.makedirs(OUTPUT_DIR, exist_ok=True)
    os.makedirs(TEMP_DIR, exist_ok=True)
