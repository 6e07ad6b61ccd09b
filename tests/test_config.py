import json
import logging

import pytest

from hysteria.config import (
    ClientConfig,
    ConfigError,
    Relay,
    ServerConfig,
    parse_client_config,
    parse_server_config,
    string_to_bps,
)


@pytest.mark.parametrize(
    "s, want",
    [
        ("8 bps", 1),
        ("3   bps", 0),
        ("9991Bps", 9991),
        ("10 KBps", 10240),
        ("10 Kbps", 1280),
        ("10 MBps", 10485760),
        ("10 Mbps", 1310720),
        ("10 GBps", 10737418240),
        ("10 Gbps", 1342177280),
        ("10 TBps", 10995116277760),
        ("10 Tbps", 1374389534720),
        ("6699E Kbps", 0),
        ("400 Bsp", 0),
        ("9 GBbps", 0),
        ("Mbps", 0),
    ],
    ids=[
        "bps 1", "bps 2", "Bps", "KBps", "Kbps", "MBps", "Mbps", "GBps",
        "Gbps", "TBps", "Tbps", "invalid 1", "invalid 2", "invalid 3", "invalid 4",
    ],
)
def test_string_to_bps(s, want):
    assert string_to_bps(s) == want


def test_string_to_bps_empty():
    assert string_to_bps("") == 0


def _client(**extra):
    base = {
        "server": "example.com:443",
        "up_mbps": 10,
        "down_mbps": 50,
        "socks5": {"listen": "127.0.0.1:1080"},
    }
    base.update(extra)
    return base


def test_parse_client_config_minimal():
    config = parse_client_config(json.dumps(_client()).encode())
    assert config.server == "example.com:443"
    assert config.socks5.listen == "127.0.0.1:1080"
    assert config.speed() == (10 * 125000, 50 * 125000)


def test_client_speed_strings():
    config = ClientConfig.from_dict(_client(up="10 MBps", down="10 Mbps"))
    assert config.speed() == (10485760, 1310720)


def test_client_invalid_speed_format():
    config = ClientConfig.from_dict(_client(up="fast"))
    with pytest.raises(ConfigError, match="invalid speed format"):
        config.speed()
    with pytest.raises(ConfigError, match="invalid speed"):
        config.check()


def test_client_requires_a_mode():
    data = _client()
    del data["socks5"]
    with pytest.raises(ConfigError, match="at least one mode"):
        parse_client_config(json.dumps(data))


def test_client_requires_server():
    with pytest.raises(ConfigError, match="no server address"):
        parse_client_config(json.dumps(_client(server="")))


def test_client_speed_too_low():
    with pytest.raises(ConfigError, match="invalid speed"):
        parse_client_config(json.dumps(_client(up_mbps=0)))


def test_client_socks5_timeout():
    data = _client(socks5={"listen": "127.0.0.1:1080", "timeout": 4})
    with pytest.raises(ConfigError, match="invalid SOCKS5 timeout"):
        parse_client_config(json.dumps(data))


def test_client_tun_timeout_boundary():
    ok = ClientConfig.from_dict(_client(tun={"name": "tun0", "timeout": 4}))
    ok.check()
    assert ok.tun.timeout == 4
    bad = ClientConfig.from_dict(_client(tun={"name": "tun0", "timeout": 3}))
    with pytest.raises(ConfigError, match="invalid TUN timeout"):
        bad.check()


def test_client_receive_window():
    with pytest.raises(ConfigError, match="receive window"):
        parse_client_config(json.dumps(_client(recv_window=1000)))


def test_client_relays_decoded_and_checked():
    data = _client(relay_tcps=[{"listen": "127.0.0.1:2222", "remote": "example.com:22", "timeout": 60}])
    config = parse_client_config(json.dumps(data))
    assert config.tcp_relays == [Relay("127.0.0.1:2222", "example.com:22", 60)]
    bad = _client(relay_udps=[{"listen": "127.0.0.1:53"}])
    with pytest.raises(ConfigError, match="no relay remote address"):
        parse_client_config(json.dumps(bad))


def test_relay_check():
    with pytest.raises(ConfigError, match="no relay listen address"):
        Relay(remote="example.com:1").check()
    with pytest.raises(ConfigError, match="invalid relay timeout"):
        Relay("a:1", "b:2", 2).check()


def test_deprecated_relay_warns(caplog):
    data = _client(relay_tcp={"listen": "127.0.0.1:2222", "remote": "example.com:22"})
    with caplog.at_level(logging.WARNING, logger="hysteria.config"):
        config = parse_client_config(json.dumps(data))
    assert config.tcp_relay.remote == "example.com:22"
    assert "deprecated" in caplog.text


def test_deprecated_relay_requires_remote():
    data = _client(relay_udp={"listen": "127.0.0.1:53"})
    with pytest.raises(ConfigError, match="no UDP relay remote address"):
        parse_client_config(json.dumps(data))


def test_client_auth_base64():
    config = ClientConfig.from_dict(_client(auth="c2VjcmV0"))
    assert config.auth == b"secret"
    with pytest.raises(ConfigError):
        ClientConfig.from_dict(_client(auth="%%%"))


def test_wrong_type_rejected():
    with pytest.raises(ConfigError):
        ClientConfig.from_dict(_client(up_mbps="10"))
    with pytest.raises(ConfigError):
        ClientConfig.from_dict(_client(insecure=1))
    with pytest.raises(ConfigError):
        ClientConfig.from_dict(_client(recv_window=-1))


def test_keys_case_insensitive():
    config = ClientConfig.from_dict({"Server": "example.com:443", "SOCKS5": {"Listen": ":1080"}})
    assert config.server == "example.com:443"
    assert config.socks5.listen == ":1080"


def test_invalid_json():
    with pytest.raises(ConfigError):
        parse_client_config(b"{not json")


def _server(**extra):
    base = {"listen": ":443", "cert": "cert.pem", "key": "key.pem"}
    base.update(extra)
    return base


def test_parse_server_config_minimal():
    config = parse_server_config(json.dumps(_server()))
    assert config.listen == ":443"
    assert config.cert_file == "cert.pem"
    assert config.speed() == (0, 0)


def test_server_requires_listen():
    with pytest.raises(ConfigError, match="no listen address"):
        parse_server_config(json.dumps(_server(listen="")))


def test_server_requires_cert_or_acme():
    with pytest.raises(ConfigError, match="ACME domain or TLS cert"):
        parse_server_config(json.dumps({"listen": ":443", "cert": "cert.pem"}))
    config = parse_server_config(json.dumps({"listen": ":443", "acme": {"domains": ["example.com"]}}))
    assert config.acme.domains == ["example.com"]


def test_server_speed_limits():
    with pytest.raises(ConfigError, match="invalid speed"):
        parse_server_config(json.dumps(_server(up="100 bps")))
    config = parse_server_config(json.dumps(_server(up_mbps=100)))
    assert config.speed() == (100 * 125000, 0)


def test_server_max_conn_client():
    with pytest.raises(ConfigError, match="max connections"):
        parse_server_config(json.dumps(_server(max_conn_client=-1)))


def test_server_receive_window():
    with pytest.raises(ConfigError, match="receive window"):
        parse_server_config(json.dumps(_server(recv_window_client=100)))


def test_server_auth_raw_config_kept():
    raw = {"mode": "passwords", "config": ["one", "two"]}
    config = ServerConfig.from_dict(_server(auth=raw))
    assert config.auth.mode == "passwords"
    assert config.auth.config == ["one", "two"]