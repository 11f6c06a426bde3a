import logging

import pytest

from courier_tooling.curl_tools import (
    HTTP_METHODS,
    InvalidCommand,
    MalformedFragment,
    parse_curl_command,
)

JSON_POST_CURL = """curl -X POST https://api.example.com/auth -H "Content-Type: application/json" -d '{"a":1}'"""

DELHIVERY_TRACK_CURL = r"""
curl --location 'https://track.delhivery.com/api/v1/packages/json/?waybill=1234567890&ref_ids=' \
  --header 'Accept: application/json' \
  --header 'Authorization: Token {{env:DELHIVERY_TOKEN}}'
"""


@pytest.mark.parametrize("method", HTTP_METHODS)
def test_explicit_method_is_kept(method):
    spec = parse_curl_command(f"curl -X {method} https://api.example.com/x")
    assert spec.method == method


def test_method_is_upper_cased():
    assert parse_curl_command("curl --request patch https://api.example.com/x").method == "PATCH"


def test_unknown_method_falls_back_to_get():
    with pytest.warns(MalformedFragment):
        spec = parse_curl_command("curl -X FETCH https://api.example.com/x")
    assert spec.method == "GET"


@pytest.mark.parametrize("flag", ["-d", "--data", "--data-raw", "--data-binary", "--data-urlencode"])
def test_data_without_method_promotes_to_post(flag):
    spec = parse_curl_command(f"curl https://api.example.com/x {flag} 'a=1'")
    assert spec.method == "POST"


def test_explicit_method_is_not_promoted():
    spec = parse_curl_command("curl -X PUT https://api.example.com/x -d 'a=1'")
    assert spec.method == "PUT"


def test_header_value_is_trimmed():
    spec = parse_curl_command('curl https://api.example.com/x -H "X-Trace:   abc  "')
    assert spec.headers == [("X-Trace", "abc")]


def test_json_post_example():
    spec = parse_curl_command(JSON_POST_CURL)
    assert spec.method == "POST"
    assert spec.url == "https://api.example.com/auth"
    assert spec.headers == [("Content-Type", "application/json")]
    assert spec.body == {"a": 1}
    assert spec.is_form_url_encoded is False


def test_empty_command_raises():
    with pytest.raises(InvalidCommand):
        parse_curl_command("")
    with pytest.raises(InvalidCommand):
        parse_curl_command("   \n ")


def test_other_program_raises():
    with pytest.raises(InvalidCommand):
        parse_curl_command("wget https://x")


def test_invalid_command_is_a_value_error():
    with pytest.raises(ValueError):
        parse_curl_command("http GET https://x")


def test_bare_curl_returns_empty_url():
    spec = parse_curl_command("curl")
    assert spec.url == ""
    assert spec.method == "GET"
    assert spec.headers == []
    assert spec.body is None
    assert spec.auth.type == "none"


def test_missing_scheme_defaults_to_https():
    assert parse_curl_command("curl api.example.com/v1/rates").url == "https://api.example.com/v1/rates"


def test_http_scheme_is_kept():
    assert parse_curl_command("curl http://localhost:8080/ping").url == "http://localhost:8080/ping"


def test_templated_url_is_kept():
    spec = parse_curl_command('curl "https://api.example.com/v1/orders/{{order_id}}"')
    assert spec.url == "https://api.example.com/v1/orders/{{order_id}}"


def test_query_params_mirror_the_url():
    spec = parse_curl_command('curl "https://api.example.com/endpoint?param1=value1&param2=value2"')
    assert spec.url == "https://api.example.com/endpoint?param1=value1&param2=value2"
    assert spec.query_params == [("param1", "value1"), ("param2", "value2")]


def test_multiline_courier_command():
    spec = parse_curl_command(DELHIVERY_TRACK_CURL)
    assert spec.method == "GET"
    assert spec.url == "https://track.delhivery.com/api/v1/packages/json/?waybill=1234567890&ref_ids="
    assert spec.query_params == [("waybill", "1234567890"), ("ref_ids", "")]
    assert spec.headers == [
        ("Accept", "application/json"),
        ("Authorization", "Token {{env:DELHIVERY_TOKEN}}"),
    ]
    assert spec.follow_redirects is True
    assert spec.auth.type == "none"


def test_url_flag():
    spec = parse_curl_command("curl --request POST --url https://api.example.com/shipments --data 'a=1'")
    assert spec.url == "https://api.example.com/shipments"
    assert spec.method == "POST"


def test_only_first_positional_is_the_url():
    spec = parse_curl_command("curl https://a.example.com/one https://b.example.com/two")
    assert spec.url == "https://a.example.com/one"


def test_header_without_colon_is_skipped():
    with pytest.warns(MalformedFragment):
        spec = parse_curl_command('curl https://api.example.com/x -H "NoColonHere"')
    assert spec.headers == []


def test_header_colon_inside_quotes():
    spec = parse_curl_command("""curl https://api.example.com/x -H 'X-Meta: "a:b"'""")
    assert spec.headers == [("X-Meta", '"a:b"')]


def test_unknown_flags_are_skipped():
    spec = parse_curl_command("curl --compressed -sS -v https://api.example.com/x")
    assert spec.url == "https://api.example.com/x"


def test_passthrough_flag_arguments_are_not_taken_as_url():
    spec = parse_curl_command("curl -o label.pdf -F 'file=@label.pdf' https://api.example.com/labels")
    assert spec.url == "https://api.example.com/labels"


def test_flag_missing_argument_is_recovered():
    with pytest.warns(MalformedFragment):
        spec = parse_curl_command("curl https://api.example.com/x -H")
    assert spec.url == "https://api.example.com/x"
    assert spec.headers == []


def test_unterminated_quote_does_not_abort():
    with pytest.warns(MalformedFragment):
        spec = parse_curl_command("curl https://api.example.com/x -H 'Accept: text/plain")
    assert spec.headers == [("Accept", "text/plain")]


def test_header_shorthand_flags():
    spec = parse_curl_command(
        "curl -A 'courier-bot/1.0' -e https://admin.example.com -b 'session=abc' https://api.example.com/x"
    )
    assert spec.headers == [
        ("User-Agent", "courier-bot/1.0"),
        ("Referer", "https://admin.example.com"),
        ("Cookie", "session=abc"),
    ]


def test_transport_flags():
    spec = parse_curl_command("curl -L -k -m 12.5 https://api.example.com/x")
    assert spec.follow_redirects is True
    assert spec.verify_tls is False
    assert spec.timeout_s == 12.5


def test_bad_timeout_is_ignored():
    with pytest.warns(MalformedFragment):
        spec = parse_curl_command("curl --max-time soon https://api.example.com/x")
    assert spec.timeout_s is None


def test_head_flag():
    assert parse_curl_command("curl -I https://api.example.com/x").method == "HEAD"


def test_glued_method_flag():
    assert parse_curl_command("curl -XDELETE https://api.example.com/x/1").method == "DELETE"


def test_custom_command_name():
    spec = parse_curl_command("curl.exe -X POST https://api.example.com/x", command_name="curl.exe")
    assert spec.method == "POST"
    with pytest.raises(InvalidCommand):
        parse_curl_command("curl -X POST https://api.example.com/x", command_name="curl.exe")


def test_credentials_are_not_logged(caplog):
    caplog.set_level(logging.DEBUG, logger="courier_tooling")
    parse_curl_command("curl https://api.example.com/x -H 'Authorization: Bearer super-secret-token' -u admin:hunter2")
    assert "super-secret-token" not in caplog.text
    assert "hunter2" not in caplog.text


def test_explicit_get_with_data_is_kept():
    spec = parse_curl_command("curl -X GET https://api.example.com/search -d 'q=parcel'")
    assert spec.method == "GET"
    assert spec.body == {"q": "parcel"}


def test_method_flag_after_data_is_kept():
    assert parse_curl_command("curl https://api.example.com/x -d 'a=1' -X PUT").method == "PUT"
    assert parse_curl_command("curl -I https://api.example.com/x -d 'a=1'").method == "HEAD"


@pytest.mark.parametrize(
    "flags, follow, verify",
    [
        ("-sL", True, True),
        ("-kL", True, False),
        ("-sSLk", True, False),
        ("-sS", False, True),
    ],
)
def test_combined_short_flags(flags, follow, verify):
    spec = parse_curl_command(f"curl {flags} https://api.example.com/x")
    assert spec.url == "https://api.example.com/x"
    assert spec.follow_redirects is follow
    assert spec.verify_tls is verify


def test_combined_short_flags_ending_in_a_value_flag():
    spec = parse_curl_command("curl -sXPOST https://api.example.com/x")
    assert spec.method == "POST"
