import os
from dataclasses import dataclass
from typing import Literal, Optional

from dotenv import load_dotenv

ApiKeyPlacement = Literal["header", "query"]

ENV_PREFIX = "CURL_TOOLS_"


@dataclass
class TranscoderSettings:
    """
    Knobs shared by the parser, the serializer and the HTTP hand-off.

    Environment overrides (read by from_env):
      CURL_TOOLS_COMMAND_NAME       leading program name, default "curl"
      CURL_TOOLS_API_KEY_HEADER     header used for api_key auth, default "X-API-Key"
      CURL_TOOLS_API_KEY_PLACEMENT  "header" or "query"
      CURL_TOOLS_API_KEY_QUERY_PARAM query parameter used when placement is "query"
      CURL_TOOLS_TIMEOUT_S          default timeout when the command sets none
    """
    command_name: str = "curl"
    api_key_header: str = "X-API-Key"
    api_key_placement: ApiKeyPlacement = "header"
    api_key_query_param: str = "api_key"
    timeout_s: float = 30.0

    @classmethod
    def from_env(
        cls,
        *,
        auto_dotenv: bool = False,
        dotenv_path: Optional[str] = None,
        dotenv_override: bool = False,
    ) -> "TranscoderSettings":
        if auto_dotenv:
            load_dotenv(dotenv_path=dotenv_path, override=dotenv_override)

        defaults = cls()

        placement = os.getenv(f"{ENV_PREFIX}API_KEY_PLACEMENT", defaults.api_key_placement).strip().lower()
        if placement not in ("header", "query"):
            raise ValueError(f"{ENV_PREFIX}API_KEY_PLACEMENT must be 'header' or 'query', got {placement!r}")

        raw_timeout = os.getenv(f"{ENV_PREFIX}TIMEOUT_S")
        try:
            timeout_s = float(raw_timeout) if raw_timeout else defaults.timeout_s
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}TIMEOUT_S must be a number, got {raw_timeout!r}") from None

        return cls(
            command_name=os.getenv(f"{ENV_PREFIX}COMMAND_NAME") or defaults.command_name,
            api_key_header=os.getenv(f"{ENV_PREFIX}API_KEY_HEADER") or defaults.api_key_header,
            api_key_placement=placement,  # type: ignore[arg-type]
            api_key_query_param=os.getenv(f"{ENV_PREFIX}API_KEY_QUERY_PARAM") or defaults.api_key_query_param,
            timeout_s=timeout_s,
        )
