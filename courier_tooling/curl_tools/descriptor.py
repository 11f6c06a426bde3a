import dataclasses
import json
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, urlencode, urlsplit

from pydantic import BaseModel, Field, TypeAdapter

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]
HTTP_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS")

Pair = Tuple[str, str]
JsonObject = Dict[str, Any]
JsonArray = List[Any]
Body = Union[str, JsonObject, JsonArray]

# Header names that carry an API key on their own, without an Authorization header.
API_KEY_HEADERS: Tuple[str, ...] = ("x-api-key", "api-key", "apikey", "x-api-token")

# Header values hidden by RequestDescriptor.summary().
SENSITIVE_HEADERS = frozenset({
    "authorization", "proxy-authorization", "cookie", "token", *API_KEY_HEADERS,
})

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain"
MULTIPART_CONTENT_TYPE = "multipart/form-data"


# ----------------------------
# Auth variants
# ----------------------------

class NoAuth(BaseModel):
    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["none"] = "none"


class BasicAuth(BaseModel):
    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["basic"] = "basic"
    username: str = ""
    password: str = ""


class BearerAuth(BaseModel):
    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["bearer"] = "bearer"
    token: str = ""


class JwtAuth(BaseModel):
    """Same transport as BearerAuth; the token has three dot-separated segments."""
    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["jwt"] = "jwt"
    token: str = ""


class ApiKeyAuth(BaseModel):
    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["api_key"] = "api_key"
    token: str = ""


AuthSpec = Annotated[
    Union[NoAuth, BasicAuth, BearerAuth, JwtAuth, ApiKeyAuth],
    Field(discriminator="type"),
]

_AUTH_ADAPTER: TypeAdapter = TypeAdapter(AuthSpec)


def classify_bearer_token(token: str) -> Union[BearerAuth, JwtAuth]:
    if len(token.split(".")) == 3:
        return JwtAuth(token=token)
    return BearerAuth(token=token)


# ----------------------------
# JSON-safe helpers
# ----------------------------

def _json_safe(x: Any) -> Any:
    """
    Convert arbitrary python objects into JSON-serializable structures.
    """
    if x is None or isinstance(x, (str, int, float, bool)):
        return x

    if isinstance(x, (tuple, list)):
        return [_json_safe(v) for v in x]

    if isinstance(x, dict):
        return {str(k): _json_safe(v) for k, v in x.items()}

    if isinstance(x, BaseModel):
        return _json_safe(x.model_dump())

    if dataclasses.is_dataclass(x) and not isinstance(x, type):
        return _json_safe(dataclasses.asdict(x))

    return str(x)


def _rehydrate_pairs(items: Any) -> list[Pair]:
    """
    Accept pairs stored as ["k", "v"], ("k", "v") or {"key": ..., "value": ...}.
    Anything else is dropped.
    """
    out: list[Pair] = []
    for it in items or []:
        if isinstance(it, (list, tuple)) and len(it) == 2:
            out.append((str(it[0]), str(it[1])))
        elif isinstance(it, dict) and "key" in it and "value" in it:
            out.append((str(it["key"]), str(it["value"])))
    return out


# ----------------------------
# Request descriptor
# ----------------------------

@dataclass
class RequestDescriptor:
    method: str = "GET"
    url: str = ""
    headers: list[Pair] = field(default_factory=list)
    query_params: list[Pair] = field(default_factory=list)
    body: Optional[Body] = None
    is_form_url_encoded: bool = False
    auth: AuthSpec = field(default_factory=NoAuth)

    follow_redirects: bool = False
    verify_tls: bool = True
    timeout_s: Optional[float] = None

    def get_header(self, name: str) -> Optional[str]:
        """First value for a header name, compared case-insensitively."""
        wanted = name.lower()
        for k, v in self.headers:
            if k.lower() == wanted:
                return v
        return None

    def has_header(self, name: str) -> bool:
        return self.get_header(name) is not None

    def add_header(self, key: str, value: str) -> None:
        self.headers.append((key, value))

    @property
    def content_type(self) -> str:
        return (self.get_header("Content-Type") or "").lower()

    def has_body(self) -> bool:
        return self.body is not None and self.body != ""

    def effective_url(self) -> str:
        """
        The URL with any query_params it does not already carry appended.
        The URL stays the source of truth; pairs it already has are skipped.
        """
        params = [(k, v) for k, v in self.query_params if k]
        if not params or not self.url:
            return self.url

        base, hash_, fragment = self.url.partition("#")
        try:
            existing = set(parse_qsl(urlsplit(base).query, keep_blank_values=True))
        except ValueError:
            existing = set()

        missing = [p for p in params if p not in existing]
        if not missing:
            return self.url

        if "?" not in base:
            sep = "?"
        elif base.endswith(("?", "&")):
            sep = ""
        else:
            sep = "&"
        return f"{base}{sep}{urlencode(missing, quote_via=quote)}{hash_}{fragment}"

    def form_fields(self) -> list[Pair]:
        """Object body as form pairs; non-string values are JSON encoded, None is dropped."""
        if not isinstance(self.body, dict):
            return []
        out: list[Pair] = []
        for k, v in self.body.items():
            if v is None:
                continue
            out.append((str(k), v if isinstance(v, str) else json.dumps(v)))
        return out

    def to_dict(self) -> dict[str, Any]:
        """
        JSON-safe snapshot, the shape form components read and write.
        Pairs are stored as {"key": ..., "value": ...}.
        """
        return {
            "method": self.method,
            "url": self.url,
            "headers": [{"key": k, "value": v} for k, v in self.headers],
            "query_params": [{"key": k, "value": v} for k, v in self.query_params],
            "body": _json_safe(self.body),
            "is_form_url_encoded": self.is_form_url_encoded,
            "auth": self.auth.model_dump(),
            "follow_redirects": self.follow_redirects,
            "verify_tls": self.verify_tls,
            "timeout_s": self.timeout_s,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RequestDescriptor":
        """
        Rehydrate a descriptor produced by to_dict() or edited by a form.
        Raises ValueError for an unknown method and pydantic.ValidationError
        for a malformed auth block.
        """
        dd = dict(d)

        method = str(dd.get("method") or "GET").upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported or unrecognized HTTP method: {method}")

        timeout = dd.get("timeout_s")

        return cls(
            method=method,
            url=str(dd.get("url") or ""),
            headers=_rehydrate_pairs(dd.get("headers")),
            query_params=_rehydrate_pairs(dd.get("query_params")),
            body=dd.get("body"),
            is_form_url_encoded=bool(dd.get("is_form_url_encoded", False)),
            auth=_AUTH_ADAPTER.validate_python(dd.get("auth") or {"type": "none"}),
            follow_redirects=bool(dd.get("follow_redirects", False)),
            verify_tls=bool(dd.get("verify_tls", True)),
            timeout_s=float(timeout) if timeout is not None else None,
        )

    def summary(self) -> dict[str, Any]:
        """Loggable view with credentials redacted."""
        auth = self.auth
        return {
            "method": self.method,
            "url": self.url,
            "headers": [
                (k, "[REDACTED]" if k.lower() in SENSITIVE_HEADERS else v)
                for k, v in self.headers
            ],
            "query_params": list(self.query_params),
            "has_body": self.has_body(),
            "body_type": type(self.body).__name__ if self.body is not None else None,
            "is_form_url_encoded": self.is_form_url_encoded,
            "auth": {
                "type": auth.type,
                "has_username": bool(getattr(auth, "username", "")),
                "has_password": bool(getattr(auth, "password", "")),
                "has_token": bool(getattr(auth, "token", "")),
            },
        }


# ----------------------------
# Validation
# ----------------------------

@dataclass
class ValidationReport:
    valid: bool
    issues: list[str] = field(default_factory=list)


def validate_request(request: RequestDescriptor) -> ValidationReport:
    """
    Completeness check for a descriptor before it is handed to the HTTP client.
    Parsing never fails on these; forms use the report to prompt the user.
    """
    issues: list[str] = []

    if not request.url:
        issues.append("Missing URL")
    if not request.method:
        issues.append("Missing HTTP method")
    elif request.method not in HTTP_METHODS:
        issues.append(f"Unsupported HTTP method: {request.method}")

    auth = request.auth
    if isinstance(auth, BasicAuth) and (not auth.username or not auth.password):
        issues.append("Incomplete Basic auth credentials")
    elif isinstance(auth, (BearerAuth, JwtAuth)) and not auth.token:
        issues.append("Missing token for Bearer/JWT auth")
    elif isinstance(auth, ApiKeyAuth) and not auth.token:
        issues.append("Missing API key")

    return ValidationReport(valid=not issues, issues=issues)
