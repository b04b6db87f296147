"""Protocol constants for the TM1 REST API.

Centralizes HTTP codes, header names and endpoint paths to avoid
duplication across modules.
"""

# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_BAD_REQUEST = 400
HTTP_STATUS_UNAUTHORIZED = 401
HTTP_STATUS_SERVER_ERROR_MIN = 500
HTTP_STATUS_SERVER_ERROR_MAX = 600

# Connection defaults
DEFAULT_ADDRESS = "localhost"
DEFAULT_PORT = 8001
DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_CONNECTION_POOL_SIZE = 10
DEFAULT_POOL_CONNECTIONS = 1
DEFAULT_HEALTH_CHECK_TIMEOUT_MS = 5000
API_ROOT = "/api/v1"

# Header names
SESSION_HEADER = "TM1SessionId"
SESSION_COOKIE = "TM1SessionId"
SANDBOX_HEADER = "TM1-Sandbox"
SESSION_CONTEXT_HEADER = "TM1-SessionContext"
NAMESPACE_HEADER = "CAMNamespace"
API_KEY_HEADER = "API-Key"
DEFAULT_SESSION_CONTEXT = "tm1rest"

BASE_HEADERS: dict[str, str] = {
    "Connection": "keep-alive",
    "User-Agent": "tm1rest",
    "Content-Type": "application/json; odata.streaming=true; charset=utf-8",
    "Accept": "application/json;odata.metadata=none,text/plain",
}

# Credential sentinel: an api key paired with this user name is an IBM Cloud key
CLOUD_API_KEY_USER = "apikey"

# Default token endpoint, relative to the server origin
DEFAULT_TOKEN_PATH = "/auth/v1/token"  # noqa: S105

# Server endpoints
SERVER_NAME_ENDPOINT = "/Configuration/ServerName"
PRODUCT_VERSION_ENDPOINT = "/Configuration/ProductVersion"
ACTIVE_USER_ENDPOINT = "/ActiveUser"
ACTIVE_SESSION_ENDPOINT = "/ActiveSession"
CLOSE_SESSION_ENDPOINT = "/ActiveSession/tm1.Close"
ASYNC_OPERATION_ENDPOINT = "/AsyncOperations('{}')"
ASYNC_OPERATION_CANCEL_ENDPOINT = "/AsyncOperations('{}')/Cancel"

# Async operation defaults
DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_OPERATION_TIMEOUT_MS = 300_000
DEFAULT_CLEANUP_MAX_AGE_MS = 3_600_000
