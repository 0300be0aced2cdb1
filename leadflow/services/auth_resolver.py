"""
Universal Authentication Resolver

Turns a declarative partner auth configuration into request headers and
URL parameters, and classifies partner test responses.

resolve_auth() never raises: every failure comes back as valid=False with
a readable error, and no headers or URL changes.
"""
import base64
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit, parse_qsl, urlencode

import httpx
import structlog

from leadflow.config import settings

logger = structlog.get_logger()


class AuthType(str, enum.Enum):
    """Wire values of the auth config `type` tag."""
    NONE = "none"
    BEARER_TOKEN = "bearer_token"
    API_KEY = "api_key"
    BASIC_AUTH = "basic_auth"
    CUSTOM_HEADER = "custom_header"
    QUERY_PARAM = "query_param"
    OAUTH2 = "oauth2"
    CUSTOM = "custom"


class AuthTestCategory(str, enum.Enum):
    """Outcome categories for a live auth test response."""
    SUCCESS = "success"
    REQUEST_INVALID = "request_invalid"
    AUTH_INVALID = "auth_invalid"
    INCONCLUSIVE = "inconclusive"


@dataclass
class AuthResult:
    """Resolved authentication for one outbound request."""
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    valid: bool = False
    error: Optional[str] = None


@dataclass
class AuthTestOutcome:
    success: bool
    auth_valid: bool
    category: AuthTestCategory


@dataclass
class AuthTestResult:
    """Result of a live authentication test request."""
    success: bool = False
    status_code: Optional[int] = None
    response: Any = None
    error: Optional[str] = None
    auth_valid: bool = False


AUTH_TEMPLATES = {
    AuthType.BEARER_TOKEN.value: {
        "name": "Bearer Token",
        "description": "Uses Authorization: Bearer {token}",
        "config_template": {"token": "{YOUR_BEARER_TOKEN}"},
        "example": "Authorization: Bearer abc123xyz",
    },
    AuthType.API_KEY.value: {
        "name": "API Key (Custom Header)",
        "description": "Uses custom header name with API key",
        "config_template": {"header_name": "X-API-Key", "key": "{YOUR_API_KEY}"},
        "example": "X-API-Key: your-secret-key-here",
    },
    AuthType.BASIC_AUTH.value: {
        "name": "Basic Authentication",
        "description": "Uses username:password encoded in Authorization header",
        "config_template": {"username": "{USERNAME}", "password": "{PASSWORD}"},
        "example": "Authorization: Basic dXNlcjpwYXNz",
    },
    AuthType.CUSTOM_HEADER.value: {
        "name": "Custom Headers",
        "description": "Any custom headers needed by the API",
        "config_template": {
            "headers": {"X-Custom-Auth": "{VALUE}", "X-Client-ID": "{CLIENT_ID}"}
        },
        "example": "X-Custom-Auth: secret, X-Client-ID: client123",
    },
    AuthType.QUERY_PARAM.value: {
        "name": "Query Parameter",
        "description": "Authentication via URL query parameter",
        "config_template": {"param_name": "token", "param_value": "{YOUR_TOKEN}"},
        "example": "?token=your-token-here",
    },
    AuthType.OAUTH2.value: {
        "name": "OAuth2 Access Token",
        "description": "Uses a pre-issued OAuth2 access token as a bearer token",
        "config_template": {"access_token": "{YOUR_ACCESS_TOKEN}"},
        "example": "Authorization: Bearer ya29.a0Af...",
    },
    AuthType.CUSTOM.value: {
        "name": "Custom",
        "description": "Arbitrary headers and/or URL parameters",
        "config_template": {
            "headers": {"X-Partner-Key": "{VALUE}"},
            "url_params": {"source": "{SOURCE}"},
        },
        "example": "X-Partner-Key: secret, ?source=leadflow",
    },
}


def _set_query_params(url: str, params: dict[str, Any]) -> str:
    """Set (append or overwrite) query parameters on an absolute URL."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid URL: {url}")

    replaced = {str(key) for key in params}
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in replaced]
    query.extend((str(key), str(value)) for key, value in params.items())

    return urlunsplit(parts._replace(query=urlencode(query)))


def _missing(value: Any) -> bool:
    return value is None or value == ""


def resolve_auth(auth_type: str, auth_config: Optional[dict], target_url: str) -> AuthResult:
    """
    Generate authentication headers and URL for a partner request.

    Args:
        auth_type: One of the AuthType wire values
        auth_config: Variant fields for that type
        target_url: Partner endpoint

    Returns:
        AuthResult with headers, url, valid and error
    """
    result = AuthResult(url=target_url)
    config = auth_config if auth_config is not None else {}

    if not isinstance(config, dict):
        result.error = "Authentication config must be an object"
        return result

    headers: dict[str, str] = {}
    url = target_url

    try:
        if auth_type == AuthType.BEARER_TOKEN:
            if _missing(config.get("token")):
                result.error = "Bearer token is required"
                return result
            headers["Authorization"] = f"Bearer {config['token']}"

        elif auth_type == AuthType.API_KEY:
            if _missing(config.get("key")) or _missing(config.get("header_name")):
                result.error = "API key and header name are required"
                return result
            headers[str(config["header_name"])] = str(config["key"])

        elif auth_type == AuthType.BASIC_AUTH:
            if _missing(config.get("username")) or _missing(config.get("password")):
                result.error = "Username and password are required for Basic Auth"
                return result
            raw = f"{config['username']}:{config['password']}".encode("utf-8")
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode('ascii')}"

        elif auth_type == AuthType.CUSTOM_HEADER:
            if not isinstance(config.get("headers"), dict):
                result.error = "Custom headers object is required"
                return result
            headers.update({str(k): str(v) for k, v in config["headers"].items()})

        elif auth_type == AuthType.QUERY_PARAM:
            if _missing(config.get("param_name")) or _missing(config.get("param_value")):
                result.error = "Query parameter name and value are required"
                return result
            url = _set_query_params(url, {config["param_name"]: config["param_value"]})

        elif auth_type == AuthType.OAUTH2:
            if _missing(config.get("access_token")):
                result.error = "OAuth2 access token is required"
                return result
            headers["Authorization"] = f"Bearer {config['access_token']}"

        elif auth_type == AuthType.CUSTOM:
            if isinstance(config.get("headers"), dict):
                headers.update({str(k): str(v) for k, v in config["headers"].items()})
            if isinstance(config.get("url_params"), dict) and config["url_params"]:
                url = _set_query_params(url, config["url_params"])

        elif auth_type == AuthType.NONE:
            pass

        else:
            result.error = f"Unsupported authentication type: {auth_type}"
            return result

        # Merged last so partners can override computed headers
        if isinstance(config.get("additional_headers"), dict):
            headers.update({str(k): str(v) for k, v in config["additional_headers"].items()})

    except Exception as e:
        result.error = f"Authentication generation failed: {e}"
        return result

    result.headers = headers
    result.url = url
    result.valid = True
    return result


def classify_auth_test(status_code: int) -> AuthTestOutcome:
    """
    Classify a partner test response.

    400/422 mean the credentials were accepted but the test payload was
    rejected; only 401/403 mean the credentials are wrong.
    """
    if 200 <= status_code < 300:
        return AuthTestOutcome(success=True, auth_valid=True, category=AuthTestCategory.SUCCESS)
    if status_code in (400, 422):
        return AuthTestOutcome(success=False, auth_valid=True, category=AuthTestCategory.REQUEST_INVALID)
    if status_code in (401, 403):
        return AuthTestOutcome(success=False, auth_valid=False, category=AuthTestCategory.AUTH_INVALID)
    return AuthTestOutcome(success=False, auth_valid=False, category=AuthTestCategory.INCONCLUSIVE)


def merge_auth_config_preserving_secrets(
    new_config: Optional[dict],
    existing_config: Optional[dict]
) -> Optional[dict]:
    """
    Merge a partially edited auth config into the stored one.

    Blank fields in new_config mean "unchanged": edit forms never echo
    stored secrets back, so an empty token must not wipe the saved one.
    """
    if not existing_config:
        return new_config

    merged = dict(existing_config)
    for key, value in (new_config or {}).items():
        if value is not None and value != "":
            merged[key] = value
    return merged


def get_auth_template(auth_type: str) -> Optional[dict]:
    """Get configuration template for an auth type."""
    return AUTH_TEMPLATES.get(auth_type)


def get_all_auth_types() -> dict:
    """All supported auth types with their templates."""
    return {
        "types": {t.name: t.value for t in AuthType},
        "templates": AUTH_TEMPLATES,
    }


def _describe_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


async def test_authentication(
    auth_type: str,
    auth_config: Optional[dict],
    url: str,
    method: str = "GET",
    test_payload: Any = None,
    client: Optional[httpx.AsyncClient] = None,
) -> AuthTestResult:
    """
    Test partner authentication with a live request.

    HTTP error statuses are not raised; they are classified with
    classify_auth_test().
    """
    result = AuthTestResult()

    auth = resolve_auth(auth_type, auth_config, url)
    if not auth.valid:
        result.error = auth.error
        return result

    method = method.upper()
    request_kwargs: dict[str, Any] = {
        "headers": {"Content-Type": "application/json", **auth.headers},
    }
    if method in ("POST", "PUT", "PATCH") and test_payload is not None:
        request_kwargs["json"] = test_payload

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.AUTH_TEST_TIMEOUT_SECONDS)

    try:
        response = await client.request(method, auth.url, **request_kwargs)
    except httpx.TimeoutException:
        result.error = "Request timeout - API endpoint may be slow or unreachable"
        return result
    except httpx.ConnectError:
        result.error = "API endpoint unreachable - check URL"
        return result
    except httpx.HTTPError as e:
        result.error = f"Test request failed: {e}"
        return result
    finally:
        if owns_client:
            await client.aclose()

    body = _describe_body(response)
    outcome = classify_auth_test(response.status_code)

    result.status_code = response.status_code
    result.response = body
    result.success = outcome.success
    result.auth_valid = outcome.auth_valid

    body_text = json.dumps(body) if not isinstance(body, str) else body
    if outcome.category == AuthTestCategory.REQUEST_INVALID:
        result.error = f"Request data issue ({response.status_code}): {body_text}"
    elif outcome.category == AuthTestCategory.AUTH_INVALID:
        result.error = f"Authentication failed ({response.status_code}): {body_text}"
    elif outcome.category == AuthTestCategory.INCONCLUSIVE:
        result.error = f"Request failed ({response.status_code}): {body_text}"

    logger.info(
        "auth_test_completed",
        auth_type=auth_type,
        status_code=response.status_code,
        category=outcome.category.value,
    )

    return result
