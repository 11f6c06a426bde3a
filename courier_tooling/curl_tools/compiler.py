import base64
import json
import logging
import re
from typing import Any, Callable, Literal, Mapping, Optional
from urllib.parse import parse_qsl, unquote_plus, urlsplit

import httpx
from dotenv import load_dotenv

from .descriptor import (
    API_KEY_HEADERS,
    FORM_CONTENT_TYPE,
    HTTP_METHODS,
    JSON_CONTENT_TYPE,
    MULTIPART_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    JwtAuth,
    Pair,
    RequestDescriptor,
    ValidationReport,
    classify_bearer_token,
    validate_request,
)
from .errors import InvalidCommand, report_malformed
from .settings import TranscoderSettings
from .tokenizer import TokenCursor, is_flag, strip_quotes, takes_argument, tokenize
from .transport import SecretResolver, build_http_request

logger = logging.getLogger(__name__)

BodyEncoding = Literal["form", "json", "raw"]
FlagHandler = Callable[[TokenCursor, RequestDescriptor], None]

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")


# ----------------------------
# Small helpers
# ----------------------------

def _take_argument(cursor: TokenCursor) -> Optional[str]:
    flag = cursor.peek()
    arg = cursor.take_argument()
    if arg is None:
        report_malformed(f"curl: missing argument for {flag}", logger=logger)
        return None
    return strip_quotes(arg)


def normalize_url(raw: str) -> str:
    """
    Prepend https:// when no scheme is present and check the result.
    Invalid URLs are kept as-is: templated URLs from API docs are common.
    """
    url = raw.replace('"', "").replace("'", "").strip()
    if not url:
        return ""
    if not _SCHEME_RE.match(url):
        url = "https://" + url

    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        report_malformed(f"URL validation warning: {e}", logger=logger)
        return url

    if parsed.scheme not in ("http", "https") or not parsed.host:
        report_malformed(f"URL validation warning: {url!r} is not an absolute http(s) URL", logger=logger)
    return url


def split_header(header: str) -> Optional[Pair]:
    """
    Split "Key: Value" on the first colon that is not inside a quoted
    section of the header text. Returns None when there is no usable colon.
    """
    quote: Optional[str] = None
    for idx, ch in enumerate(header):
        if ch in ("'", '"') and (idx == 0 or header[idx - 1] != "\\"):
            if quote is None:
                quote = ch
            elif ch == quote:
                quote = None
        elif ch == ":" and quote is None:
            if idx == 0:
                return None
            return header[:idx].strip(), header[idx + 1:].strip()
    return None


def sniff_body_encoding(payload: str, content_type: str) -> BodyEncoding:
    """
    Decide how a -d payload is read. Rules are checked top to bottom and the
    first match wins, so an explicit Content-Type always outranks the shape
    of the payload:

      1. Content-Type names application/x-www-form-urlencoded  -> form
      2. Content-Type names json                                -> json
      3. payload is wrapped in {...} or [...]                   -> json
      4. payload has "=" and either "&" or no "{"               -> form
      5. anything else                                          -> raw
    """
    ct = content_type.lower()
    if FORM_CONTENT_TYPE in ct:
        return "form"
    if "json" in ct:
        return "json"

    stripped = payload.strip()
    if (stripped.startswith("{") and stripped.endswith("}")) or (stripped.startswith("[") and stripped.endswith("]")):
        return "json"
    if "=" in payload and ("&" in payload or "{" not in payload):
        return "form"
    return "raw"


def parse_form_pairs(payload: str) -> list[Pair]:
    """Parse "a=1&b=2", percent-decoding each side; undecodable pairs are kept raw."""
    pairs: list[Pair] = []
    for chunk in payload.split("&"):
        key, _, value = chunk.partition("=")
        if not key:
            continue
        try:
            pairs.append((unquote_plus(key, errors="strict"), unquote_plus(value, errors="strict")))
        except UnicodeDecodeError:
            report_malformed("Could not percent-decode a form field; keeping it verbatim", logger=logger)
            pairs.append((key, value))
    return pairs


def _object_body(request: RequestDescriptor) -> dict[str, Any]:
    if not isinstance(request.body, dict):
        if request.has_body():
            logger.debug("Replacing %s body with an object body", type(request.body).__name__)
        request.body = {}
        request.is_form_url_encoded = False
    return request.body


def _merge_raw(request: RequestDescriptor, payload: str) -> None:
    # curl joins repeated -d payloads with "&"
    if isinstance(request.body, str) and request.body:
        request.body = f"{request.body}&{payload}"
    else:
        if isinstance(request.body, (dict, list)):
            logger.debug("Raw payload replaces the structured body")
        request.body = payload
        request.is_form_url_encoded = False


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def _merge_json(request: RequestDescriptor, payload: str) -> None:
    try:
        parsed = json.loads(payload, parse_constant=_reject_constant)
    except ValueError as e:
        report_malformed(f"Error parsing JSON body: {e}; keeping raw text", logger=logger)
        _merge_raw(request, payload)
        return

    if isinstance(parsed, dict):
        _object_body(request).update(parsed)
    elif isinstance(parsed, list):
        request.body = parsed
        request.is_form_url_encoded = False
    else:
        _merge_raw(request, payload)


def _merge_form(request: RequestDescriptor, payload: str) -> None:
    pairs = parse_form_pairs(payload)
    if not pairs:
        _merge_raw(request, payload)
        return
    _object_body(request).update(pairs)
    request.is_form_url_encoded = True


# ----------------------------
# Flag handlers
# ----------------------------

def _handle_positional(cursor: TokenCursor, request: RequestDescriptor) -> None:
    token = cursor.peek() or ""
    cursor.advance()
    if request.url:
        logger.debug("Ignoring extra positional argument")
        return
    request.url = normalize_url(strip_quotes(token))


def _handle_url_flag(cursor: TokenCursor, request: RequestDescriptor) -> None:
    arg = _take_argument(cursor)
    if arg is None:
        return
    if request.url:
        logger.debug("Ignoring --url, a URL is already set")
        return
    request.url = normalize_url(arg)


def _handle_method(cursor: TokenCursor, request: RequestDescriptor) -> None:
    arg = _take_argument(cursor)
    if arg is None:
        return
    method = arg.strip().upper()
    if method in HTTP_METHODS:
        request.method = method
    else:
        report_malformed(f"Unsupported HTTP method {method!r}; falling back to GET", logger=logger)
        request.method = "GET"


def _classify_auth_header(request: RequestDescriptor, key: str, value: str) -> None:
    """
    Auth signals found in headers. The last signal in the command wins.
    """
    lower_key = key.lower()

    if lower_key == "authorization":
        lower_value = value.lower()
        if lower_value.startswith("basic "):
            encoded = value[6:].strip()
            try:
                decoded = base64.b64decode(encoded + "=" * (-len(encoded) % 4), validate=True).decode("utf-8")
            except ValueError:
                report_malformed("Failed to decode Basic auth credentials", logger=logger)
                request.auth = BasicAuth()
            else:
                username, _, password = decoded.partition(":")
                request.auth = BasicAuth(username=username, password=password)
                logger.debug("Extracted Basic auth credentials")
        elif lower_value.startswith("bearer "):
            request.auth = classify_bearer_token(value[7:].strip())
            logger.debug("Detected %s token", request.auth.type)
        elif lower_value.startswith("api-key ") or lower_value.startswith("apikey "):
            request.auth = ApiKeyAuth(token=value.split(" ", 1)[1].strip())
            logger.debug("Detected API key authentication")

    if lower_key in API_KEY_HEADERS and value:
        request.auth = ApiKeyAuth(token=value)
        logger.debug("Detected API key in header %s", key)


def _handle_header(cursor: TokenCursor, request: RequestDescriptor) -> None:
    arg = _take_argument(cursor)
    if arg is None:
        return
    pair = split_header(arg)
    if pair is None:
        report_malformed("Invalid header format (missing colon); header skipped", logger=logger)
        return
    key, value = pair
    logger.debug("Processing header: %s", key)
    _classify_auth_header(request, key, value)
    request.add_header(key, value)


def _header_flag(header_name: str) -> FlagHandler:
    """Handler for flags that are shorthand for a single header (-A, -e, -b)."""
    def handler(cursor: TokenCursor, request: RequestDescriptor) -> None:
        arg = _take_argument(cursor)
        if arg is not None:
            request.add_header(header_name, arg)
    return handler


def _handle_data(cursor: TokenCursor, request: RequestDescriptor) -> None:
    flag = cursor.peek()
    payload = _take_argument(cursor)
    if payload is None:
        return

    if flag == "--data-urlencode":
        key, sep, value = payload.partition("=")
        if not sep:
            key, value = "", payload
        _object_body(request)[key] = value
        request.is_form_url_encoded = True
    elif payload.startswith("@") and flag != "--data-raw":
        report_malformed("File payloads (@file) are not read; keeping the reference as raw text", logger=logger)
        _merge_raw(request, payload)
    else:
        encoding = sniff_body_encoding(payload, request.content_type)
        logger.debug("Reading %s payload as %s", flag, encoding)
        if encoding == "form":
            _merge_form(request, payload)
        elif encoding == "json":
            _merge_json(request, payload)
        else:
            _merge_raw(request, payload)


def _handle_user(cursor: TokenCursor, request: RequestDescriptor) -> None:
    arg = _take_argument(cursor)
    if arg is None:
        return

    if arg.find(":") > 0:
        username, _, password = arg.partition(":")
    else:
        username, password = arg, ""
    request.auth = BasicAuth(username=username, password=password)
    logger.debug("Extracted Basic auth from --user")

    if not request.has_header("Authorization"):
        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        request.add_header("Authorization", f"Basic {encoded}")


def _handle_head(cursor: TokenCursor, request: RequestDescriptor) -> None:
    cursor.advance()
    request.method = "HEAD"


def _handle_location(cursor: TokenCursor, request: RequestDescriptor) -> None:
    cursor.advance()
    request.follow_redirects = True


def _handle_insecure(cursor: TokenCursor, request: RequestDescriptor) -> None:
    cursor.advance()
    request.verify_tls = False


def _handle_timeout(cursor: TokenCursor, request: RequestDescriptor) -> None:
    flag = cursor.peek()
    arg = _take_argument(cursor)
    if arg is None:
        return
    try:
        request.timeout_s = float(arg)
    except ValueError:
        report_malformed(f"curl: {flag} expects seconds, got {arg!r}", logger=logger)


_DATA_FLAGS = frozenset({"-d", "--data", "--data-raw", "--data-binary", "--data-ascii", "--data-urlencode"})
_METHOD_FLAGS = frozenset({"-X", "--request", "-I", "--head"})

_FLAG_HANDLERS: dict[str, FlagHandler] = {
    "-X": _handle_method,
    "--request": _handle_method,
    "-H": _handle_header,
    "--header": _handle_header,
    "-d": _handle_data,
    "--data": _handle_data,
    "--data-raw": _handle_data,
    "--data-binary": _handle_data,
    "--data-ascii": _handle_data,
    "--data-urlencode": _handle_data,
    "-u": _handle_user,
    "--user": _handle_user,
    "--url": _handle_url_flag,
    "-A": _header_flag("User-Agent"),
    "--user-agent": _header_flag("User-Agent"),
    "-e": _header_flag("Referer"),
    "--referer": _header_flag("Referer"),
    "-b": _header_flag("Cookie"),
    "--cookie": _header_flag("Cookie"),
    "-I": _handle_head,
    "--head": _handle_head,
    "-L": _handle_location,
    "--location": _handle_location,
    "-k": _handle_insecure,
    "--insecure": _handle_insecure,
    "-m": _handle_timeout,
    "--max-time": _handle_timeout,
    "--connect-timeout": _handle_timeout,
}


def _finalize(request: RequestDescriptor) -> None:
    if request.url:
        try:
            query = urlsplit(request.url).query
        except ValueError as e:
            report_malformed(f"Error processing URL: {e}", logger=logger)
            query = ""
        if query:
            request.query_params = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True)]
            logger.debug("Extracted %d query parameters from URL", len(request.query_params))

    if request.has_body() and not request.has_header("Content-Type"):
        if request.is_form_url_encoded:
            content_type = FORM_CONTENT_TYPE
        elif isinstance(request.body, (dict, list)):
            content_type = JSON_CONTENT_TYPE
        else:
            content_type = TEXT_CONTENT_TYPE
        request.add_header("Content-Type", content_type)


# ----------------------------
# Parse direction
# ----------------------------

def parse_curl_command(curl_text: str, *, command_name: str = "curl") -> RequestDescriptor:
    """
    Parse a pasted curl command into a RequestDescriptor.

    Supported:
      - URL: first positional argument or --url; https:// is assumed
      - Method: -X/--request, -I/--head; without either, data makes it POST
      - Headers: -H/--header "Key: Value", -A, -e, -b
      - Body: -d/--data/--data-raw/--data-binary/--data-ascii (JSON, form or raw,
        see sniff_body_encoding) and --data-urlencode "k=v" (form)
      - Auth: -u/--user, Authorization: Basic/Bearer/Api-Key, x-api-key style headers
      - Transport: -L/--location, -k/--insecure, -m/--max-time, --connect-timeout

    Raises InvalidCommand only when the text is empty or does not start with
    the command name. Everything else is recovered with a MalformedFragment
    warning.
    """
    if not curl_text or not curl_text.strip():
        raise InvalidCommand("Empty curl command.")

    parts = curl_text.strip().split(None, 1)
    if parts[0] != command_name:
        raise InvalidCommand(f'Invalid curl command, must start with "{command_name}".')

    request = RequestDescriptor()
    cursor = TokenCursor(tokenize(parts[1]) if len(parts) > 1 else [])

    seen: set[str] = set()

    while not cursor.at_end():
        token = cursor.peek() or ""
        if not is_flag(token):
            _handle_positional(cursor, request)
            continue

        handler = _FLAG_HANDLERS.get(token)
        if handler is not None:
            seen.add(token)
            handler(cursor, request)
        elif takes_argument(token):
            logger.debug("Ignoring %s and its argument", token)
            cursor.advance(2)
        else:
            logger.debug("Ignoring unsupported flag %s", token)
            cursor.advance()

    # an explicit -X / -I is kept even when data is present
    if seen & _DATA_FLAGS and not seen & _METHOD_FLAGS and request.method == "GET":
        request.method = "POST"
        logger.debug("Changed method to POST because data is present")

    _finalize(request)
    logger.debug("Parsed curl request: %s", request.summary())
    return request


# ----------------------------
# Serialize direction
# ----------------------------

def _double_quoted(value: str) -> str:
    # a shell still expands $ and ` inside double quotes
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("$", "\\$").replace("`", "\\`")
    return f'"{escaped}"'


def _single_quoted(value: str) -> str:
    return "'" + value.replace("'", "'\\''") + "'"


def _api_key_already_sent(request: RequestDescriptor, token: str, api_key_header: str) -> bool:
    names = set(API_KEY_HEADERS) | {api_key_header.lower()}
    return any(k.lower() in names and v == token for k, v in request.headers)


def _render_curl(request: RequestDescriptor, command_name: str, api_key_header: str) -> str:
    if not request.url:
        return command_name

    parts: list[str] = [command_name, "-X", request.method or "GET", _double_quoted(request.effective_url())]

    for key, value in request.headers:
        if key and value:
            parts += ["-H", _double_quoted(f"{key}: {value}")]

    auth = request.auth
    if auth.type != "none" and not request.has_header("Authorization"):
        if isinstance(auth, BasicAuth) and auth.username:
            cred = f"{auth.username}:{auth.password}" if auth.password else auth.username
            parts += ["-u", _double_quoted(cred)]
        elif isinstance(auth, (BearerAuth, JwtAuth)) and auth.token:
            parts += ["-H", _double_quoted(f"Authorization: Bearer {auth.token}")]
        elif (
            isinstance(auth, ApiKeyAuth)
            and auth.token
            and not _api_key_already_sent(request, auth.token, api_key_header)
        ):
            parts += ["-H", _double_quoted(f"{api_key_header}: {auth.token}")]

    if request.has_body():
        body = request.body
        content_type = request.content_type
        multipart = MULTIPART_CONTENT_TYPE in content_type

        if isinstance(body, str):
            flag = "-F" if multipart else ("--data-raw" if body.startswith("@") else "-d")
            parts += [flag, _single_quoted(body)]
        elif isinstance(body, dict) and (multipart or request.is_form_url_encoded or FORM_CONTENT_TYPE in content_type):
            flag = "-F" if multipart else "--data-urlencode"
            for key, value in request.form_fields():
                parts += [flag, _double_quoted(f"{key}={value}")]
        else:
            parts += ["-d", _single_quoted(json.dumps(body, separators=(",", ":"), ensure_ascii=False, allow_nan=False))]

    return " ".join(parts)


def _minimal_command(request: Any, command_name: str) -> str:
    url = getattr(request, "url", None)
    if not url or not isinstance(url, str):
        return command_name
    method = getattr(request, "method", None) or "GET"
    return f"{command_name} -X {method} {_double_quoted(url)}"


def to_curl_command(
    request: RequestDescriptor,
    *,
    command_name: str = "curl",
    api_key_header: str = "X-API-Key",
) -> str:
    """
    Render a RequestDescriptor as a single-line curl command.

    Never raises: on any failure the method and URL alone are emitted, or just
    the command name when there is no URL.
    """
    try:
        return _render_curl(request, command_name, api_key_header)
    except Exception:
        logger.warning("Error converting request to curl; emitting a minimal command", exc_info=True)
        try:
            return _minimal_command(request, command_name)
        except Exception:
            return command_name


# ----------------------------
# Entry point
# ----------------------------

class CurlTranscoder:
    """
    Main entrypoint.

    - parse(curl_text): curl text -> RequestDescriptor
    - serialize(request): RequestDescriptor -> curl text
    - validate(request): completeness report for forms
    - request_from_dict(d): rehydrate a form snapshot
    - build_request(request): httpx.Request for the HTTP client (not sent)
    """

    def __init__(
        self,
        *,
        settings: Optional[TranscoderSettings] = None,
        secrets: Optional[SecretResolver] = None,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
        dotenv_override: bool = False,
    ):
        if auto_dotenv:
            load_dotenv(dotenv_path=dotenv_path, override=dotenv_override)

        self.settings = settings or TranscoderSettings.from_env()
        self.secrets = secrets or SecretResolver()

    def parse(self, curl_text: str) -> RequestDescriptor:
        return parse_curl_command(curl_text, command_name=self.settings.command_name)

    def serialize(self, request: RequestDescriptor) -> str:
        return to_curl_command(
            request,
            command_name=self.settings.command_name,
            api_key_header=self.settings.api_key_header,
        )

    def validate(self, request: RequestDescriptor) -> ValidationReport:
        return validate_request(request)

    def request_from_dict(self, d: Mapping[str, Any]) -> RequestDescriptor:
        return RequestDescriptor.from_dict(d)

    def build_request(
        self,
        request: RequestDescriptor,
        inputs: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Request:
        return build_http_request(request, settings=self.settings, secrets=self.secrets, inputs=inputs)
