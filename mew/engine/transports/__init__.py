"""Transport strategies for talking to the assistant process."""
from .base import Transport
from .pipe import ActiveJobCounter, PipeTransport
from .registry import build_transport
from .terminal import TerminalTransport

__all__ = [
    "Transport",
    "ActiveJobCounter",
    "PipeTransport",
    "TerminalTransport",
    "build_transport",
]
