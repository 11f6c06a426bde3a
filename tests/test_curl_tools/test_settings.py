import pytest

from courier_tooling.curl_tools import CurlTranscoder, TranscoderSettings

ENV_KEYS = [
    "CURL_TOOLS_COMMAND_NAME",
    "CURL_TOOLS_API_KEY_HEADER",
    "CURL_TOOLS_API_KEY_PLACEMENT",
    "CURL_TOOLS_API_KEY_QUERY_PARAM",
    "CURL_TOOLS_TIMEOUT_S",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        # setenv first so monkeypatch restores whatever load_dotenv writes
        monkeypatch.setenv(key, "unset")
        monkeypatch.delenv(key)


def test_defaults():
    s = TranscoderSettings.from_env()
    assert s == TranscoderSettings()
    assert s.command_name == "curl"
    assert s.api_key_header == "X-API-Key"
    assert s.timeout_s == 30.0


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CURL_TOOLS_COMMAND_NAME", "curl.exe")
    monkeypatch.setenv("CURL_TOOLS_API_KEY_HEADER", "X-Courier-Key")
    monkeypatch.setenv("CURL_TOOLS_API_KEY_PLACEMENT", "Query")
    monkeypatch.setenv("CURL_TOOLS_API_KEY_QUERY_PARAM", "key")
    monkeypatch.setenv("CURL_TOOLS_TIMEOUT_S", "12")

    s = TranscoderSettings.from_env()
    assert s.command_name == "curl.exe"
    assert s.api_key_header == "X-Courier-Key"
    assert s.api_key_placement == "query"
    assert s.api_key_query_param == "key"
    assert s.timeout_s == 12.0


def test_invalid_placement_raises(monkeypatch):
    monkeypatch.setenv("CURL_TOOLS_API_KEY_PLACEMENT", "cookie")
    with pytest.raises(ValueError):
        TranscoderSettings.from_env()


def test_invalid_timeout_raises(monkeypatch):
    monkeypatch.setenv("CURL_TOOLS_TIMEOUT_S", "soon")
    with pytest.raises(ValueError):
        TranscoderSettings.from_env()


def test_dotenv_file_is_loaded(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("CURL_TOOLS_COMMAND_NAME=curl.exe\nCURL_TOOLS_API_KEY_HEADER=X-From-Dotenv\n")

    transcoder = CurlTranscoder(auto_dotenv=True, dotenv_path=str(env_file))
    assert transcoder.settings.command_name == "curl.exe"
    assert transcoder.settings.api_key_header == "X-From-Dotenv"
    assert transcoder.parse("curl.exe https://api.example.com/x").url == "https://api.example.com/x"
