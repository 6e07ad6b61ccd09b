# hysteria

Building blocks for a TCP/UDP relay and proxy that is meant to hold up on
poor, lossy network links. The package holds the pieces that decide *what*
to do with traffic, *how fast* to send it and *who* may connect. The
transport underneath is left to you.

## What is inside

| Module | Purpose |
| --- | --- |
| `hysteria.config` | Server and client configuration: decoding from JSON, defaults and validation. Also parses rate strings such as `"100 Mbps"`. |
| `hysteria.ipmasker` | `IPMasker` hides the low bits of IPv4/IPv6 addresses in log output. |
| `hysteria.acl.entry` | Parses ACL rules (`direct`, `proxy`, `block`, `hijack`) and their conditions (`domain`, `domain-suffix`, `cidr`, `ip`, `country`, `all`). |
| `hysteria.acl.engine` | `Engine` applies a list of ACL entries to a host and port, with an LRU cache of results. |
| `hysteria.congestion.pacer` | `Pacer`, a token-bucket pacer. |
| `hysteria.congestion.brutal` | `BrutalSender`, a fixed-rate congestion controller that adjusts for the observed ack rate. |
| `hysteria.conns` | Packet connections that obfuscate every datagram, with an optional WeChat-video-call style header. |
| `hysteria.auth` | Password, external-command and HTTP authentication for connecting clients, and `action_to_string` for log output. |
| `hysteria.update` | Fetches a release description and reports whether it differs from the running version. |
| `hysteria.mmdb` | Downloads the GeoIP country database if it is not already present. |
| `hysteria.kploader` | `KeypairLoader` keeps a TLS certificate and key loaded, and reloads them when the files change. |

Install with `pip install .`; the tests need the `test` extra.

## Rates

Speeds in a configuration may be given as whole Mbps (`up_mbps`, `down_mbps`)
or as a string (`up`, `down`) in the form `<number> [K|M|G|T](B|b)ps`:

```python
from hysteria.config import string_to_bps

string_to_bps("10 MBps")   # 10485760 bytes per second
string_to_bps("10 Mbps")   # 1310720 bytes per second
string_to_bps("Mbps")      # 0: not a valid rate
```

The prefixes are binary (K = 1024). A lower-case `b` means bits, and the
value is divided by eight. `up_mbps` and `down_mbps` are multiplied by
125000.

## Configuration

```python
from hysteria.config import ConfigError, parse_client_config

document = """
{
  "server": "proxy.example.com:443",
  "up_mbps": 20,
  "down_mbps": 100,
  "socks5": {"listen": "127.0.0.1:1080"}
}
"""

try:
    config = parse_client_config(document)
except ConfigError as exc:
    print("bad configuration:", exc)
else:
    up, down = config.speed()
```

The document must be standard JSON. Keys are matched exactly first and then
without regard to case; unknown keys are ignored and `null` leaves a field at
its default. `parse_server_config` does the same for `ServerConfig`. Both
raise `ConfigError` for an undecodable document or a failed check, for
example a missing listen address, a speed below 16384 bytes per second, a
receive window below 65536, or a relay timeout of four seconds or less.
`ServerConfig.from_dict` and `ClientConfig.from_dict` decode already parsed
JSON without checking it; call `check()` yourself. The deprecated
`relay_tcp` and `relay_udp` settings are still accepted and log a warning.

## Access control lists

An ACL file holds one rule per line. Empty lines and lines that start with
`#` are skipped:

```
direct domain-suffix example.com
proxy  cidr 10.0.0.0/8
block  all udp/443
hijack domain ads.example.com 127.0.0.1
```

A single rule can be parsed with `parse_entry`, which raises `ACLError` on
bad syntax:

```python
from hysteria.acl.entry import parse_entry

entry = parse_entry("block cidr 8.8.8.0/24 */53")
```

A whole file is loaded with `load_from_file(filename, resolve_ip_addr,
geoip_load_func)`. `resolve_ip_addr` turns a host name into an address (an
`ipaddress` object, a string, or `None`) and may raise. `geoip_load_func`
returns an object whose `country(ip)` gives an ISO country code; it is only
called if some rule uses `country`. Rules loaded from a file fall back to
`Action.PROXY`.

`Engine.resolve_and_match(host, port, is_udp)` returns a `MatchResult`
with `action`, `arg`, `is_domain`, `ip`, `zone` and `error`. Rules are
tried in order and the first match wins. A failure to resolve a domain is
reported in `error`; the action is still decided then, from the domain alone.

Ports in conditions may be given as `tcp/80`, `udp/*`, `*/53`, or with one of
the well-known aliases such as `dns`, `https` or `quic`.

## Congestion control

`BrutalSender(bps)` sends at a fixed target rate, whatever losses it sees.
Once at least 50 packets have been acknowledged or lost over the last few
seconds, it divides the rate by the ack rate (never less than 0.8) to make up
for the loss. Pacing is done by `Pacer`. All times are integer nanoseconds,
as from `time.time_ns()`; `get_congestion_window` needs an RTT provider set
with `set_rtt_stats_provider`.

## Obfuscated packet connections

`ObfsPacketConn(conn, obfs)` wraps anything with `recvfrom`, `sendto`,
`close` and `settimeout`, such as a UDP socket. `obfs` is any object with
`obfuscate(data)` and `deobfuscate(data)` (the `Obfuscator` protocol);
packets that do not deobfuscate are skipped. `ObfsWeChatPacketConn` also
puts a 13-byte header with a running sequence number in front of each packet.

## Authentication

`password_auth_func` accepts either a list of passwords or the older
`{"password": ...}` form. `external_auth_func` hands the decision to an HTTP
endpoint (`{"http": url}`, the details posted as JSON) or to a command
(`{"cmd": path}`). The command is run with the client address, the payload
and the two speeds as arguments; exit status 0 admits the client and its
trimmed output is the message. Both raise `AuthConfigError` when the
configuration is invalid. Every check returns `(ok, message)`.

## Updates, GeoIP database and certificates

`check_update(current_version, url)` fetches a release description from
`url` and returns it as a `ReleaseInfo` when its tag differs; any failure
gives `None`. `ensure_mmdb(filename, url)` downloads the database to
`filename` only if the file does not exist. `KeypairLoader(cert_path,
key_path)` loads a TLS 1.3 server `ssl.SSLContext`, returns it from
`context()`, and reloads it when either file changes; use it as a context
manager or call `close()`.

## What it does not do

There is no command-line program, and no client or server that carries
traffic: no QUIC transport, no SOCKS5, HTTP, TUN, relay, TProxy or redirect
listeners, and no ACME certificate handling. No obfuscator is supplied; bring
your own object for `hysteria.conns`. There is no built-in GeoIP reader and
no DNS resolver selection; `hysteria.acl` takes both as functions you pass in.