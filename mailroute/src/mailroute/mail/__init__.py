"""Mail backend contract and the offline snapshot implementation."""

from .backend import (
    AssignmentResult,
    CandidatePage,
    LabelChangeResult,
    MailBackend,
    MessageSummary,
    RoutingMetadata,
)
from .snapshot import SnapshotMailBackend, SnapshotMessage

__all__ = [
    "AssignmentResult",
    "CandidatePage",
    "LabelChangeResult",
    "MailBackend",
    "MessageSummary",
    "RoutingMetadata",
    "SnapshotMailBackend",
    "SnapshotMessage",
]
