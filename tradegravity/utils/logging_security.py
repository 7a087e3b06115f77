"""
Logging setup and credential redaction.

API keys travel in query strings (``subscription-key``, ``token``) and in
headers, so anything that logs a request goes through these helpers first.
"""
import logging
import sys
from typing import Any, Dict, Mapping, Optional, Set
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

REDACTED = "[REDACTED]"

# Query parameters that should be redacted
SENSITIVE_PARAMS: Set[str] = {
    'subscription-key',
    'token',
    'api_key',
    'apikey',
    'key',
    'access_token',
    'secret',
}

# Headers that should ALWAYS be redacted
SENSITIVE_HEADERS: Set[str] = {
    'authorization',
    'ocp-apim-subscription-key',
    'x-api-key',
    'api-key',
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def redact_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy of ``params`` with credential values replaced."""
    if not params:
        return {}
    return {
        key: REDACTED if str(key).lower().strip() in SENSITIVE_PARAMS else value
        for key, value in params.items()
    }


def redact_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    if not headers:
        return {}
    return {
        key: REDACTED if str(key).lower().strip() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def redact_url(url: str) -> str:
    """Redact credential query parameters embedded in a URL."""
    parts = urlsplit(str(url))
    if not parts.query:
        return str(url)
    query = redact_params(dict(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit(parts._replace(query=urlencode(query, safe="[]")))


def configure_logging(level: str = "INFO", verbose: bool = False) -> None:
    """Configure root logging for command-line use.

    ``verbose`` forces DEBUG. httpx/httpcore request lines are kept at
    WARNING unless verbose, since they include full URLs.
    """
    resolved = logging.DEBUG if verbose else getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT, stream=sys.stderr, force=True)
    noisy_level = logging.DEBUG if verbose else logging.WARNING
    for name in ("httpx", "httpcore", "hpack"):
        logging.getLogger(name).setLevel(noisy_level)
