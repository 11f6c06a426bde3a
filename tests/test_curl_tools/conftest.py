import sys, os
import pytest

target_path = os.path.abspath(os.path.join(os.path.dirname(os.path.abspath(__file__)), "../.."))
if target_path not in sys.path:
    sys.path.insert(0, target_path)

from courier_tooling.curl_tools import CurlTranscoder, SecretResolver, TranscoderSettings


@pytest.fixture
def settings() -> TranscoderSettings:
    return TranscoderSettings()


@pytest.fixture
def transcoder(settings) -> CurlTranscoder:
    secrets = SecretResolver(mapping={"COURIER_API_KEY": "live-key-123"})
    return CurlTranscoder(settings=settings, secrets=secrets, auto_dotenv=False)
