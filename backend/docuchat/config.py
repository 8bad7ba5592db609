import os
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "sb-access-token")

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000")
CORS_ORIGINS_LIST = [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()]
RATE_LIMIT_STORAGE_URL = os.getenv("RATE_LIMIT_STORAGE_URL", "memory://")

# Upstream model API
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_API_BASE = os.getenv("REPLICATE_API_BASE", "https://api.replicate.com/v1")
CHAT_MODEL = os.getenv("CHAT_MODEL", "anthropic/claude-3.5-sonnet")
TITLE_MODEL = os.getenv("TITLE_MODEL", "meta/meta-llama-3-8b-instruct")
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "8192"))
PREDICTION_TIMEOUT_SECONDS = float(os.getenv("PREDICTION_TIMEOUT_SECONDS", "120"))

# Knowledge base
KNOWLEDGE_BASE_MAX_TOKENS = int(os.getenv("KNOWLEDGE_BASE_MAX_TOKENS", "150000"))

if not SUPABASE_URL or not SUPABASE_SERVICE_ROLE_KEY:
    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
