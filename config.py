# config.py
import os

# Page to capture on
URL = os.getenv("URL", "http://localhost:8080/")
HEADLESS = os.getenv("HEADLESS", "false").lower() == "true"
VIEWPORT = {
    "width": int(os.getenv("VIEWPORT_WIDTH", "1366")),
    "height": int(os.getenv("VIEWPORT_HEIGHT", "850")),
}
STOP_HOTKEY = os.getenv("STOP_HOTKEY", "ctrl+shift+s")

# Local files
RECORDINGS_DIR = os.getenv("RECORDINGS_DIR", "./recordings")
DRAFT_PATH = os.getenv("DRAFT_PATH", "./recordings/draft.json")
STORE_PATH = os.getenv("STORE_PATH", "./recordings/events.jsonl")

# WordPress plugin endpoint; empty means the local store is used
CLICKWISE_AJAX_URL = os.getenv("CLICKWISE_AJAX_URL", "")
CLICKWISE_NONCE = os.getenv("CLICKWISE_NONCE", "")
# REST root (rest_url()) and wp_rest nonce used to read the tracked events
CLICKWISE_REST_URL = os.getenv("CLICKWISE_REST_URL", "")
CLICKWISE_REST_NONCE = os.getenv("CLICKWISE_REST_NONCE", "")

# Forwarding
EVENT_RULES = os.getenv("EVENT_RULES", "")  # JSON array, or prefixes split by newline/comma
TRACK_FORMS = os.getenv("TRACK_FORMS", "true").lower() == "true"
TRACK_LINKS = os.getenv("TRACK_LINKS", "true").lower() == "true"
IGNORE_ADMIN = os.getenv("IGNORE_ADMIN", "true").lower() == "true"

RYBBIT_ENABLED = os.getenv("RYBBIT_ENABLED", "false").lower() == "true"
RYBBIT_HOST = os.getenv("RYBBIT_HOST", "https://app.rybbit.io")
RYBBIT_SITE_ID = os.getenv("RYBBIT_SITE_ID", "")

GA_ENABLED = os.getenv("GA_ENABLED", "false").lower() == "true"
GA_MEASUREMENT_ID = os.getenv("GA_MEASUREMENT_ID", "")
GA_API_SECRET = os.getenv("GA_API_SECRET", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
