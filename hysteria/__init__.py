"""Configuration, ACL, congestion control, obfuscation and authentication for a proxy tool."""

__version__ = "0.1.0"