from .compiler import (
    CurlTranscoder,
    parse_curl_command,
    to_curl_command,
    sniff_body_encoding,
    split_header,
)
from .descriptor import (
    HTTP_METHODS,
    RequestDescriptor,
    NoAuth,
    BasicAuth,
    BearerAuth,
    JwtAuth,
    ApiKeyAuth,
    ValidationReport,
    validate_request,
)
from .errors import CurlToolsError, InvalidCommand, MalformedFragment
from .settings import TranscoderSettings
from .tokenizer import TokenCursor, normalize_command, tokenize
from .transport import SecretResolver, build_http_request, client_options
