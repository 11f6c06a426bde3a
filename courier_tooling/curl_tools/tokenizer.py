import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .errors import report_malformed

logger = logging.getLogger(__name__)


# ----------------------------
# Flag tables
# ----------------------------

# Flags whose argument the parser interprets.
VALUE_FLAGS = frozenset({
    "-X", "--request",
    "-H", "--header",
    "-d", "--data", "--data-raw", "--data-binary", "--data-ascii", "--data-urlencode",
    "-u", "--user",
    "-A", "--user-agent",
    "-e", "--referer",
    "-b", "--cookie",
    "-m", "--max-time", "--connect-timeout",
    "--url",
})

# Flags that take an argument we do not interpret. The argument is still
# consumed so that it is never mistaken for the URL.
PASSTHROUGH_VALUE_FLAGS = frozenset({
    "-o", "--output",
    "-F", "--form",
    "-x", "--proxy",
    "-w", "--write-out",
    "-T", "--upload-file",
    "-c", "--cookie-jar",
    "-E", "--cert", "--key", "--cacert",
    "-r", "--range",
    "--resolve", "--retry",
})

_ALL_VALUE_FLAGS = VALUE_FLAGS | PASSTHROUGH_VALUE_FLAGS
_SHORT_VALUE_FLAGS = frozenset(f for f in _ALL_VALUE_FLAGS if len(f) == 2)

# Short flags without an argument that curl lets you combine (-sSLk).
BOOLEAN_SHORT_FLAGS = frozenset({
    "-L", "-k", "-I",
    "-s", "-S", "-v", "-i", "-f", "-g", "-G", "-N", "-O", "-#",
})

_QUOTES = ("'", '"')

# Characters a backslash escapes inside double quotes (POSIX shell rules).
_DOUBLE_QUOTE_ESCAPES = frozenset('"\\$`')


def is_flag(token: str) -> bool:
    return len(token) > 1 and token.startswith("-")


def takes_argument(flag: str) -> bool:
    return flag in _ALL_VALUE_FLAGS


def strip_quotes(token: str) -> str:
    """Remove a single layer of matching surrounding quotes."""
    if len(token) >= 2 and token[0] in _QUOTES and token[-1] == token[0]:
        return token[1:-1]
    return token


def _split_flag(token: str) -> list[str]:
    """
    Separate a recognized flag from an argument glued onto it:
      -XPOST             -> ["-X", "POST"]
      --header=Accept: * -> ["--header", "Accept: *"]
      -sL                -> ["-s", "-L"]
      -sXPOST            -> ["-s", "-X", "POST"]
    A cluster holding an unknown letter is returned untouched.
    """
    if token.startswith("--"):
        name, sep, arg = token.partition("=")
        if sep and name in _ALL_VALUE_FLAGS:
            return [name, arg] if arg else [name]
        return [token]
    if len(token) > 2 and token[:2] in _SHORT_VALUE_FLAGS:
        return [token[:2], token[2:]]
    if len(token) > 2:
        out: list[str] = []
        for idx, ch in enumerate(token[1:], start=1):
            flag = f"-{ch}"
            if flag in _SHORT_VALUE_FLAGS:
                rest = token[idx + 1:]
                return out + ([flag, rest] if rest else [flag])
            if flag not in BOOLEAN_SHORT_FLAGS:
                return [token]
            out.append(flag)
        return out
    return [token]


# ----------------------------
# Normalization pre-pass
# ----------------------------

def normalize_command(command: str) -> str:
    """
    Repair common copy-paste artifacts before tokenizing:
      - backslash-newline line continuations become a space
      - runs of whitespace outside quotes collapse to a single space
      - a closing quote glued to a following flag ('a'-H) gets a space
    Quoted text is copied through untouched.
    """
    out: list[str] = []
    in_single = False
    in_double = False
    pending_space = False
    n = len(command)
    i = 0

    while i < n:
        ch = command[i]

        if in_single:
            out.append(ch)
            if ch == "'":
                in_single = False
                pending_space = i + 1 < n and command[i + 1] == "-"
            i += 1
            continue

        if in_double:
            if ch == "\\" and i + 1 < n:
                out.append(command[i:i + 2])
                i += 2
                continue
            out.append(ch)
            if ch == '"':
                in_double = False
                pending_space = i + 1 < n and command[i + 1] == "-"
            i += 1
            continue

        if ch == "\\" and i + 1 < n:
            j = i + 1
            while j < n and command[j] in " \t\r":
                j += 1
            if j < n and command[j] == "\n":
                pending_space = True
                i = j + 1
                continue
            if pending_space and out:
                out.append(" ")
            pending_space = False
            out.append(command[i:i + 2])
            i += 2
            continue

        if ch.isspace():
            pending_space = True
            i += 1
            continue

        if pending_space and out:
            out.append(" ")
        pending_space = False
        out.append(ch)
        if ch == "'":
            in_single = True
        elif ch == '"':
            in_double = True
        i += 1

    return "".join(out)


# ----------------------------
# Tokenizer
# ----------------------------

class _TokenBuilder:
    def __init__(self) -> None:
        self.tokens: list[str] = []
        self._reset()

    def _reset(self) -> None:
        self.buf: list[str] = []
        self.started = False
        self.leading_quote: Optional[str] = None
        self.in_flag = False

    def flush(self) -> None:
        if not self.started:
            return
        value = "".join(self.buf)
        if self.in_flag:
            if value.endswith("=") and value[:-1] in _ALL_VALUE_FLAGS:
                value = value[:-1]
            self.tokens.extend(_split_flag(value))
        elif self.leading_quote is not None:
            self.tokens.append(f"{self.leading_quote}{value}{self.leading_quote}")
        else:
            self.tokens.append(value)
        self._reset()


def tokenize(command: str) -> list[str]:
    """
    Split a command line (without the leading program name) into tokens.

    - Quoted text is atomic. A token that starts with a quote keeps one layer
      of that quote around its content; consumers strip it with strip_quotes().
    - Backslash escapes resolve to the escaped character outside quotes and
      for the shell-special characters inside double quotes. Inside single
      quotes a backslash is literal.
    - A token starting with "-" outside quotes is a flag; a recognized flag
      with its argument glued on is split into two tokens.
    - An unterminated quote flushes the accumulated text as the last token and
      raises a MalformedFragment warning.
    """
    text = normalize_command(command)
    tb = _TokenBuilder()
    in_single = False
    in_double = False
    n = len(text)
    i = 0

    while i < n:
        ch = text[i]

        if in_single:
            if ch == "'":
                in_single = False
            else:
                tb.buf.append(ch)
            i += 1
            continue

        if in_double:
            if ch == "\\" and i + 1 < n:
                nxt = text[i + 1]
                if nxt == "\n":
                    i += 2
                    continue
                if nxt in _DOUBLE_QUOTE_ESCAPES:
                    tb.buf.append(nxt)
                    i += 2
                    continue
            if ch == '"':
                in_double = False
            else:
                tb.buf.append(ch)
            i += 1
            continue

        if ch == "\\":
            if i + 1 < n:
                if text[i + 1] != "\n":
                    tb.buf.append(text[i + 1])
                i += 2
            else:
                tb.buf.append(ch)
                i += 1
            tb.started = True
            continue

        if ch.isspace():
            tb.flush()
            i += 1
            continue

        if ch in _QUOTES:
            if tb.in_flag:
                tb.flush()
            if not tb.started:
                tb.leading_quote = ch
                tb.started = True
            if ch == "'":
                in_single = True
            else:
                in_double = True
            i += 1
            continue

        if ch == "-" and not tb.started:
            tb.in_flag = True
        tb.started = True
        tb.buf.append(ch)
        i += 1

    if in_single or in_double:
        report_malformed("Unterminated quote in curl command; keeping the partial token.", logger=logger)
    tb.flush()

    logger.debug("Split curl command into %d tokens", len(tb.tokens))
    return tb.tokens


# ----------------------------
# Cursor
# ----------------------------

@dataclass
class TokenCursor:
    """Single-pass cursor over a token list."""
    tokens: Sequence[str]
    position: int = 0

    def at_end(self) -> bool:
        return self.position >= len(self.tokens)

    def peek(self, offset: int = 0) -> Optional[str]:
        idx = self.position + offset
        if 0 <= idx < len(self.tokens):
            return self.tokens[idx]
        return None

    def advance(self, count: int = 1) -> None:
        self.position = min(self.position + count, len(self.tokens))

    def take_argument(self) -> Optional[str]:
        """
        Consume the flag under the cursor together with its argument.
        Returns None (and consumes only the flag) when the argument is missing.
        """
        arg = self.peek(1)
        if arg is None:
            self.advance(1)
            return None
        self.advance(2)
        return arg
