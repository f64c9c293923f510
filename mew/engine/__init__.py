"""Session/round orchestration and stream decoding for an assistant CLI."""
from .models import (
    ApprovalMode,
    RetryAck,
    Round,
    SendAck,
    SessionStatus,
    StreamErrorKind,
    StreamSummary,
    TransportState,
)
from .config import (
    ConfigSnapshot,
    CredentialConfig,
    EngineConfig,
    SessionConfig,
)
from .decoder import DecoderPolicy, StreamDecoder
from .errors import (
    BridgeError,
    CaptureError,
    SpawnError,
    TransportError,
    WriteError,
)
from .rounds import RoundCounter, should_continue
from .session_manager import SessionManager

__all__ = [
    # Models
    "ApprovalMode",
    "RetryAck",
    "Round",
    "SendAck",
    "SessionStatus",
    "StreamErrorKind",
    "StreamSummary",
    "TransportState",
    # Config
    "ConfigSnapshot",
    "CredentialConfig",
    "EngineConfig",
    "SessionConfig",
    # Decoding
    "DecoderPolicy",
    "StreamDecoder",
    # Errors
    "BridgeError",
    "CaptureError",
    "SpawnError",
    "TransportError",
    "WriteError",
    # Orchestration
    "RoundCounter",
    "SessionManager",
    "should_continue",
]
