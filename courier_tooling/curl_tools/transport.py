"""
Hand-off from a RequestDescriptor to the HTTP client.

Nothing here sends a request. build_http_request() maps the auth variant onto
concrete transport headers (or a query parameter for api_key), renders
{{env:NAME}} / {{var}} placeholders and returns an httpx.Request; the caller's
client decides when and how to send it. client_options() gives the matching
httpx.Client keyword arguments (timeout, redirects, TLS verification).
"""
import base64
import json
import logging
import os
import re
from typing import Any, Callable, Mapping, Optional
from urllib.parse import urlencode

import httpx

from .descriptor import (
    FORM_CONTENT_TYPE,
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    JwtAuth,
    Pair,
    RequestDescriptor,
)
from .settings import TranscoderSettings

logger = logging.getLogger(__name__)


# ----------------------------
# Secrets + templating
# ----------------------------

class SecretResolver:
    """
    Looks up the value behind an {{env:NAME}} placeholder: the explicit
    mapping first, then os.environ, then the optional fallback callable
    (a vault client, a prompt). Load a .env file through TranscoderSettings
    or CurlTranscoder(auto_dotenv=True) before building requests.
    """
    def __init__(
        self,
        mapping: Optional[Mapping[str, str]] = None,
        *,
        fallback: Optional[Callable[[str], Optional[str]]] = None,
    ):
        self._mapping = dict(mapping or {})
        self._fallback = fallback

    def get(self, name: str) -> Optional[str]:
        value = self._mapping.get(name, os.environ.get(name))
        if value is None and self._fallback is not None:
            value = self._fallback(name)
        return value

    def require(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            logger.warning("No secret available for placeholder {{env:%s}}", name)
            raise KeyError(f"Missing secret for {{{{env:{name}}}}}")
        return value


_ENV_PLACEHOLDER_RE = re.compile(r"\{\{\s*env\s*:\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_TEMPLATE_VAR_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_template(s: str, *, inputs: Mapping[str, Any], secrets: SecretResolver) -> str:
    """
    Templating rules:
      - {{env:NAME}} is replaced via secrets
      - {{var}} is replaced via inputs; unknown vars are left in place
    """
    s = _ENV_PLACEHOLDER_RE.sub(lambda m: secrets.require(m.group(1)), s)
    return _TEMPLATE_VAR_RE.sub(lambda m: str(inputs[m.group(1)]) if m.group(1) in inputs else m.group(0), s)


def _render_any(obj: Any, *, inputs: Mapping[str, Any], secrets: SecretResolver) -> Any:
    if isinstance(obj, str):
        return render_template(obj, inputs=inputs, secrets=secrets)
    if isinstance(obj, list):
        return [_render_any(x, inputs=inputs, secrets=secrets) for x in obj]
    if isinstance(obj, dict):
        return {str(k): _render_any(v, inputs=inputs, secrets=secrets) for k, v in obj.items()}
    return obj


# ----------------------------
# Auth -> transport
# ----------------------------

def _has_header_with_prefix(headers: list[Pair], name: str, prefix: str) -> bool:
    return any(k.lower() == name and v.lower().startswith(prefix) for k, v in headers)


def transport_headers(request: RequestDescriptor, *, settings: TranscoderSettings) -> list[Pair]:
    """
    Headers to send, with the auth variant applied when the command did not
    already carry the equivalent header.
    """
    headers = list(request.headers)
    auth = request.auth

    if isinstance(auth, BasicAuth) and auth.username:
        if not _has_header_with_prefix(headers, "authorization", "basic "):
            encoded = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
            headers.append(("Authorization", f"Basic {encoded}"))

    elif isinstance(auth, (BearerAuth, JwtAuth)) and auth.token:
        if not _has_header_with_prefix(headers, "authorization", "bearer "):
            headers.append(("Authorization", f"Bearer {auth.token}"))

    elif isinstance(auth, ApiKeyAuth) and auth.token and settings.api_key_placement == "header":
        name = settings.api_key_header
        if not any(k.lower() == name.lower() for k, _ in headers):
            headers.append((name, auth.token))

    return headers


def transport_url(request: RequestDescriptor, *, settings: TranscoderSettings) -> str:
    url = request.effective_url()
    auth = request.auth
    if isinstance(auth, ApiKeyAuth) and auth.token and settings.api_key_placement == "query":
        param = urlencode([(settings.api_key_query_param, auth.token)])
        base, hash_, fragment = url.partition("#")
        sep = "&" if "?" in base else "?"
        url = f"{base}{sep}{param}{hash_}{fragment}"
    return url


def client_options(request: RequestDescriptor, *, settings: Optional[TranscoderSettings] = None) -> dict[str, Any]:
    """Keyword arguments for httpx.Client / httpx.AsyncClient."""
    settings = settings or TranscoderSettings()
    return {
        "timeout": request.timeout_s if request.timeout_s is not None else settings.timeout_s,
        "follow_redirects": request.follow_redirects,
        "verify": request.verify_tls,
    }


def build_http_request(
    request: RequestDescriptor,
    *,
    settings: Optional[TranscoderSettings] = None,
    secrets: Optional[SecretResolver] = None,
    inputs: Optional[Mapping[str, Any]] = None,
) -> httpx.Request:
    """
    Build (but do not send) the httpx.Request described by a descriptor.
    Raises KeyError when an {{env:NAME}} placeholder has no secret, and
    ValueError when there is no URL or a JSON body holds NaN/Infinity.
    """
    settings = settings or TranscoderSettings()
    secrets = secrets or SecretResolver()
    inputs = dict(inputs or {})

    if not request.url:
        raise ValueError("Cannot build an HTTP request without a URL.")

    url = render_template(transport_url(request, settings=settings), inputs=inputs, secrets=secrets)
    headers = [
        (k, render_template(v, inputs=inputs, secrets=secrets))
        for k, v in transport_headers(request, settings=settings)
    ]

    kwargs: dict[str, Any] = {"method": request.method, "url": url, "headers": headers}

    if request.has_body():
        body = _render_any(request.body, inputs=inputs, secrets=secrets)
        if isinstance(body, dict) and (request.is_form_url_encoded or FORM_CONTENT_TYPE in request.content_type):
            rendered = RequestDescriptor(body=body)
            kwargs["content"] = urlencode(rendered.form_fields())
        elif isinstance(body, (dict, list)):
            kwargs["content"] = json.dumps(body, allow_nan=False)
        else:
            kwargs["content"] = str(body)

    logger.debug("Built %s request for %s", request.method, request.summary()["url"])
    return httpx.Request(**kwargs)
