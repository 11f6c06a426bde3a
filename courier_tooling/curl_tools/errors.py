import logging
import warnings
from typing import Optional


class CurlToolsError(Exception):
    """Base class for errors raised by curl_tools."""


class InvalidCommand(CurlToolsError, ValueError):
    """
    The text cannot be recognized as a curl command at all
    (empty input, or a different leading program name).
    """


class MalformedFragment(UserWarning):
    """
    A piece of the command was malformed and has been replaced by a safe
    default: unterminated quote, header without a colon, undecodable body,
    unknown method, invalid URL.
    """


def report_malformed(message: str, *, logger: Optional[logging.Logger] = None, stacklevel: int = 3) -> None:
    """Log a recovered fragment and surface it as a MalformedFragment warning."""
    (logger or logging.getLogger(__name__)).warning(message)
    warnings.warn(message, MalformedFragment, stacklevel=stacklevel)
