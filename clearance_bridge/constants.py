"""
Constants for ClearanceBridge.
All hardcoded values should be defined here.
"""

import os

# ============================================================
# APPLICATION CONFIGURATION
# ============================================================

# Set to True for detailed logging, False for minimal logging
DEBUG = str(os.environ.get("DEBUG", "1")).strip().lower() not in ("0", "false", "no", "off")

# Port to run the server on
PORT = 3000

# Default config file path
CONFIG_FILE = "config.json"

# ============================================================
# HTTP STATUS CODES
# ============================================================

class HTTPStatus:
    """HTTP Status Codes"""
    OK = 200
    MOVED_PERMANENTLY = 301
    MOVED_TEMPORARILY = 302
    NOT_MODIFIED = 304
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504


# Status code descriptions for logging
STATUS_MESSAGES = {
    200: "OK - Success",
    301: "Moved Permanently",
    302: "Moved Temporarily",
    304: "Not Modified",
    400: "Bad Request - Invalid request syntax",
    401: "Unauthorized",
    403: "Forbidden - Access denied (challenge?)",
    404: "Not Found",
    429: "Too Many Requests - Rate limit exceeded",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Gateway Timeout",
}

# ============================================================
# UPSTREAM
# ============================================================

DEFAULT_UPSTREAM = "https://mapleranks.com"

# Client paths under this prefix are forwarded upstream
PROXY_PREFIX = "/proxy"

# Body returned to the client when the upstream cannot be reached
PROXY_ERROR_BODY = "proxy error"

DEFAULT_ACCEPT_LANGUAGE = "zh-CN,zh;q=0.9,en;q=0.8"

# Content types whose bodies are decoded to text (anything else is passed through as bytes)
TEXTUAL_CONTENT_TYPE_MARKERS = ("text/", "json", "xml", "javascript", "x-www-form-urlencoded")

# ============================================================
# TIMEOUTS AND LIMITS
# ============================================================

# Settle time after navigation so the JS challenge can finish (milliseconds)
DEFAULT_WAIT_MS = 8000

# Navigation bound for refresh and manual-refresh pages (milliseconds)
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000

# Navigation bound for the fallback page opened while pulling cookies (milliseconds)
DEFAULT_PULL_NAVIGATION_TIMEOUT_MS = 20000

# Upstream fetch bound (milliseconds)
DEFAULT_UPSTREAM_TIMEOUT_MS = 60000

# Manual session polling (milliseconds)
DEFAULT_MANUAL_POLL_INTERVAL_MS = 3000
DEFAULT_MANUAL_POLL_MAX_MS = 3 * 60 * 1000

# Browser launch bound (seconds)
BROWSER_LAUNCH_TIMEOUT_SECONDS = 90.0

# Bound for reading the DevTools /json/version endpoint (seconds)
DEVTOOLS_VERSION_TIMEOUT_SECONDS = 5.0

# Navigation readiness condition
PAGE_READY_STATE = "domcontentloaded"

# ============================================================
# BROWSER SETTINGS
# ============================================================

DEFAULT_DEBUG_PORT = 9223

# Headless session engines
ENGINE_CHROMIUM = "chromium"
ENGINE_CAMOUFOX = "camoufox"
VALID_HEADLESS_ENGINES = {ENGINE_CHROMIUM, ENGINE_CAMOUFOX}

# Browser user agent
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/121.0.0.0 Safari/537.36"
)

VIEWPORT = {"width": 1280, "height": 800}

BROWSER_LANG_ARG = "--lang=zh-CN,zh,en"

COMMON_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
    BROWSER_LANG_ARG,
]

IGNORED_DEFAULT_ARGS = ["--enable-automation"]

# Applied to every automated context before any document script runs
STEALTH_INIT_SCRIPT = """
(() => {
  Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
  window.chrome = { runtime: {} };
  Object.defineProperty(navigator, 'languages', { get: () => ['zh-CN', 'zh', 'en'] });
  Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
  const originalQuery = window.navigator.permissions && window.navigator.permissions.query;
  if (originalQuery) {
    window.navigator.permissions.query = (parameters) =>
      parameters && parameters.name === 'notifications'
        ? Promise.resolve({ state: Notification.permission })
        : originalQuery(parameters);
  }
})();
"""

# ============================================================
# CLOUDFLARE
# ============================================================

CF_CLEARANCE_COOKIE = "cf_clearance"

# Challenge page heuristics (matched against the lower-cased body)
CHALLENGE_BRAND_TOKEN = "cloudflare"
CHALLENGE_MARKER_TOKENS = (
    "ray id",
    "checking your browser",
    "verify you are human",
    "turnstile",
)

# Single-flight key shared by every credential refresh
REFRESH_KEY = "credential"

# ============================================================
# MANUAL SESSION
# ============================================================

DEVTOOLS_VERSION_PATH = "/json/version"

MANUAL_TIP_TEMPLATE = (
    "ssh -L {port}:127.0.0.1:{port} server && chrome://inspect -> configure -> localhost:{port}"
)
