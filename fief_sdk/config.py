"""
Fief SDK configuration. Values from environment; nothing secret has a default.
"""
import os

# Fief tenant base URL (issuer); discovery lives under {BASE_URL}/.well-known/
BASE_URL = os.environ.get("FIEF_BASE_URL", "").rstrip("/")

# OAuth client registered at the tenant
CLIENT_ID = os.environ.get("FIEF_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("FIEF_CLIENT_SECRET", "").strip() or None

# Private JWK (JSON string) used to decrypt encrypted ID tokens; unset = ID tokens are signed only
ENCRYPTION_KEY = os.environ.get("FIEF_ENCRYPTION_KEY", "").strip() or None

# Timeout (seconds) applied to every request of SDK-created HTTP clients
HTTP_TIMEOUT = float(os.environ.get("FIEF_HTTP_TIMEOUT", "10.0"))

# Scopes requested by the session façade when the caller gives none
DEFAULT_SCOPE = os.environ.get("FIEF_SCOPE", "openid")

# Cookie holding the access token for cookie-based request authentication
SESSION_COOKIE_NAME = os.environ.get("FIEF_SESSION_COOKIE_NAME", "user_session")

# Refresh tokens proactively when the access token expires within this many seconds
TOKEN_REFRESH_BUFFER = int(os.environ.get("FIEF_TOKEN_REFRESH_BUFFER", "60"))

# Lifetime (seconds) of entries in the in-memory user info cache
USERINFO_CACHE_TTL = int(os.environ.get("FIEF_USERINFO_CACHE_TTL", "300"))
