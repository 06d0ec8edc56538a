"""JMAP transport and response decoding."""

from .client import JmapClient, MethodResponse, Transport

__all__ = ["JmapClient", "MethodResponse", "Transport"]
