from pathlib import Path

BASE_DIR = Path.cwd()
OUTPUT_DIR = BASE_DIR / "output"
MANIFEST_NAME = "manifest.csv"

USER_AGENT = "ue2-docs-scraper/1.0"

DEFAULT_ROOT_URL = "https://docs.unrealengine.com/udk/Two/SiteMap.html"
DEFAULT_WORKERS = 10

REQUEST_TIMEOUT_S = 30
RETRY_MAX = 3
BACKOFF_INITIAL_S = 1.0
BACKOFF_MAX_S = 30.0
MAX_REDIRECTS = 10

# token bucket: RATE_LIMIT_REQUESTS permits per RATE_LIMIT_PERIOD_S, 0 disables it
RATE_LIMIT_REQUESTS = 10
RATE_LIMIT_PERIOD_S = 1.0
RATE_LIMIT_POLL_S = 0.05

EMPTY_QUEUE_BACKOFF_S = 0.05
SHUTDOWN_GRACE_S = 5.0
