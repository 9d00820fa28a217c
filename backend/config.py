import os
import logging
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./survey.db")
VISUAL_DATABASE_URL = os.getenv("VISUAL_DATABASE_URL", "sqlite:///./visual.db")

# companion visualization service
VISUAL_API_URL = os.getenv("VISUAL_API_URL", "http://localhost:8001")
VISUAL_API_TIMEOUT = float(os.getenv("VISUAL_API_TIMEOUT", "120"))

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
AUTH_TOKEN_TTL_HOURS = int(os.getenv("AUTH_TOKEN_TTL_HOURS", "24"))

ORIGINS = os.getenv("ORIGINS", "http://localhost:5173").split(",")

UPLOAD_SESSION_TTL = int(os.getenv("UPLOAD_SESSION_TTL", "3600"))
MAX_UPLOAD_CHUNKS = int(os.getenv("MAX_UPLOAD_CHUNKS", "10000"))
RENUMBER_OFFSET = int(os.getenv("RENUMBER_OFFSET", "1000"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
