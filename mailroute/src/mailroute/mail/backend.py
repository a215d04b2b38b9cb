"""Contract between the rule engine and the remote mail backend.

What:
  Define the async operations the engine consumes (candidate listing, routing
  metadata, label resolution, label mutation, assignment) and the plain
  records they exchange.

Why:
  The backend is rate-limited and partially unreliable, and several
  implementations exist (a remote API in production, a YAML snapshot for
  offline runs, recording fakes in tests). A structural protocol lets the
  engine stay agnostic of which one it talks to.

How:
  :class:`MailBackend` is a :class:`typing.Protocol`; implementations signal
  failures by raising :class:`~mailroute.errors.MailBackendError` (or any
  exception), which the engine records on the affected message only.

Interfaces:
  :class:`MailBackend`, :class:`MessageSummary`, :class:`CandidatePage`,
  :class:`RoutingMetadata`, :class:`LabelChangeResult`,
  :class:`AssignmentResult`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class MessageSummary:
    """Lightweight listing entry for a candidate message."""

    id: str
    sender: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class CandidatePage:
    """One page of candidate messages, newest first."""

    messages: List[MessageSummary] = field(default_factory=list)
    next_page_token: Optional[str] = None

    @property
    def ids(self) -> List[str]:
        return [message.id for message in self.messages]


@dataclass
class RoutingMetadata:
    """Routing-relevant state of a single message.

    Attributes:
      sender_email: Normalised sender address, ``None`` when unresolvable.
      current_label_ids: Backend identifiers of labels already applied.
      subject: Subject line, used only for operator previews.
      current_assignee: Address of the current assignee, if any.
    """

    sender_email: Optional[str]
    current_label_ids: List[str] = field(default_factory=list)
    subject: Optional[str] = None
    current_assignee: Optional[str] = None


@dataclass
class LabelChangeResult:
    """Per-message failures reported by a label mutation."""

    failed: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class AssignmentResult:
    """Result of a non-forced assignment attempt.

    ``current_assignee_slug`` is ``None`` when the write succeeded, and names
    the existing owner when the message was already claimed by someone else.
    """

    current_assignee_slug: Optional[str] = None


class MailBackend(Protocol):
    """Async operations the rule engine needs from the mail system."""

    async def list_candidate_messages(
        self,
        query: str = "",
        max_results: int = 50,
        unassigned_only: bool = False,
    ) -> CandidatePage:
        ...

    async def get_routing_metadata(self, message_id: str) -> RoutingMetadata:
        ...

    async def resolve_label_id(self, label_name: str) -> str:
        ...

    async def apply_label_change(
        self,
        message_id: str,
        add: Sequence[str],
        remove: Sequence[str] = (),
    ) -> LabelChangeResult:
        ...

    async def set_assignment(
        self,
        message_id: str,
        assignee_email: str,
        *,
        force: bool = False,
    ) -> AssignmentResult:
        ...


__all__ = [
    "MessageSummary",
    "CandidatePage",
    "RoutingMetadata",
    "LabelChangeResult",
    "AssignmentResult",
    "MailBackend",
]
