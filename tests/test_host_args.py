import pytest

from eternalmux.host_args import (
    Destination,
    HostArgError,
    parse_host_arg,
    parse_proxy_jump,
    resolve_jumphost,
    split_idpasskey,
    validate_keepalive,
)


def test_plain_host_uses_default_port():
    assert parse_host_arg("myhost", 2022) == Destination(host="myhost", port=2022)


def test_user_host_and_port():
    dest = parse_host_arg("alice@myhost:2222", 2022)
    assert dest.username == "alice"
    assert dest.host == "myhost"
    assert dest.port == 2222


def test_ipv4_with_port():
    dest = parse_host_arg("10.0.0.1:3000", 2022)
    assert (dest.host, dest.port) == ("10.0.0.1", 3000)


def test_abbreviated_ipv6_is_left_alone():
    dest = parse_host_arg("fe80::1", 2022)
    assert dest.host == "fe80::1"
    assert dest.port == 2022


def test_expanded_ipv6_without_port():
    addr = "1:2:3:4:5:6:7:8"
    dest = parse_host_arg(addr, 2022)
    assert dest.host == addr
    assert dest.port == 2022


def test_expanded_ipv6_with_port():
    dest = parse_host_arg("bob@1:2:3:4:5:6:7:8:4000", 2022)
    assert dest.host == "1:2:3:4:5:6:7:8"
    assert dest.port == 4000
    assert dest.username == "bob"


@pytest.mark.parametrize("arg", ["1:2:3", "a:b:c:d:e:f:g:h:i:j"])
def test_invalid_colon_count_raises(arg):
    with pytest.raises(HostArgError):
        parse_host_arg(arg, 2022)


def test_non_numeric_port_raises():
    with pytest.raises(HostArgError):
        parse_host_arg("myhost:abc", 2022)


def test_parse_proxy_jump_drops_port():
    assert parse_proxy_jump("jump.example.com:22") == "jump.example.com"
    assert parse_proxy_jump("jump.example.com") == "jump.example.com"


def test_resolve_jumphost_without_user():
    assert resolve_jumphost("jump", "carol") == ("carol@jump", "jump")


def test_resolve_jumphost_with_user():
    assert resolve_jumphost("dave@jump", "carol") == ("dave@jump", "jump")


def test_validate_keepalive_bounds():
    assert validate_keepalive(1, 5) == 1
    assert validate_keepalive(5, 5) == 5
    with pytest.raises(HostArgError):
        validate_keepalive(0, 5)
    with pytest.raises(HostArgError):
        validate_keepalive(6, 5)


def test_split_idpasskey_trims_whitespace():
    passkey = "p" * 32
    assert split_idpasskey(f"XXXabc/{passkey}\r\n ") == ("XXXabc", passkey)


def test_split_idpasskey_missing_slash():
    with pytest.raises(HostArgError):
        split_idpasskey("noslashhere")


def test_split_idpasskey_wrong_passkey_length():
    with pytest.raises(HostArgError):
        split_idpasskey("id/short")