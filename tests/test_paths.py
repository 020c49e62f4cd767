import pytest

from cfgcommit.paths import (
    escape_slashes,
    path_string_to_path_comps,
    process_script_path,
    unescape,
)


@pytest.mark.parametrize(
    "path, comps",
    [
        ("/interfaces/ethernet/eth0/", ["interfaces", "ethernet", "eth0"]),
        ("interfaces//ethernet", ["interfaces", "ethernet"]),
        ("eth0", ["eth0"]),
        ("", []),
        ("///", []),
    ],
)
def test_path_string_to_path_comps(path, comps):
    assert path_string_to_path_comps(path) == comps


@pytest.mark.parametrize("text", ["10.0.0.0/24", "a/b/c", "plain", ""])
def test_escape_round_trip(text):
    escaped = escape_slashes(text)
    assert "/" not in escaped
    assert unescape(escaped) == text


def test_escaped_value_stays_one_component():
    escaped = escape_slashes("192.0.2.0/24")
    assert path_string_to_path_comps(f"/route/{escaped}/") == ["route", escaped]


def test_process_script_path_none():
    assert process_script_path(None) is None


def test_process_script_path_with_value():
    path = "/interfaces/ethernet/eth0/description/value:wan link"
    assert process_script_path(path) == " interfaces ethernet eth0 description wan link "


def test_process_script_path_unescapes_components():
    assert process_script_path("/route/10.0.0.0%2F8/") == " route 10.0.0.0/8 "


def test_empty_value_adds_nothing():
    assert process_script_path("/system/value:") == process_script_path("/system/")


def test_value_text_kept_verbatim():
    result = process_script_path("/x/value:a%2Fb")
    assert result.endswith("a%2Fb ")


def test_no_slash_returns_text():
    assert process_script_path("system").startswith("system")