"""Offline mail backend backed by a YAML mailbox snapshot.

What:
  Implement :class:`~mailroute.mail.backend.MailBackend` over an in-memory
  copy of a mailbox loaded from YAML, so rules can be previewed and applied
  without network access.

Why:
  Operators rehearse rule changes against an exported mailbox before
  touching the shared inbox, and the CLI needs a backend it can drive end to
  end in tests.

How:
  The snapshot lists messages newest first with their raw ``from`` header,
  subject, label names, and optional assignee. Label names map to stable
  identifiers (``Label_<n>``) created on first use. Queries support
  space-separated ``from:`` terms only; an empty query matches everything.

Interfaces:
  :class:`SnapshotMailBackend`.

Invariants & Safety:
  - Non-forced assignments never replace an existing assignee.
  - Mutations only change memory until :meth:`SnapshotMailBackend.save` is
    called.

Example:
  .. code-block:: yaml

     labels: {VIP: Label_1}
     messages:
       - id: m-001
         from: "Alice <alice@example.com>"
         subject: Quarterly numbers
         labels: [VIP]
         assignee: null
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import yaml

from ..core.normalize import normalize_domain, normalize_email_address, sender_domain
from ..errors import MailBackendError
from .backend import AssignmentResult, CandidatePage, LabelChangeResult, MessageSummary, RoutingMetadata


@dataclass
class SnapshotMessage:
    """One message of the snapshot."""

    id: str
    sender: Optional[str] = None
    subject: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    assignee: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotMessage":
        if not isinstance(data, dict) or not data.get("id"):
            raise MailBackendError("snapshot messages require an id")
        labels = data.get("labels") or []
        if not isinstance(labels, list):
            raise MailBackendError(f"labels of message {data['id']} must be a list")
        return cls(
            id=str(data["id"]),
            sender=data.get("from"),
            subject=data.get("subject"),
            labels=[str(name) for name in labels],
            assignee=normalize_email_address(data.get("assignee")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from": self.sender,
            "subject": self.subject,
            "labels": list(self.labels),
            "assignee": self.assignee,
        }


def _slug(email: str) -> str:
    return email.split("@", 1)[0]


class SnapshotMailBackend:
    """In-memory mailbox implementing the mail backend protocol."""

    def __init__(
        self,
        messages: Sequence[SnapshotMessage] = (),
        labels: Optional[Dict[str, str]] = None,
        path: Optional[Path] = None,
    ):
        self._messages: Dict[str, SnapshotMessage] = {}
        self._order: List[str] = []
        for message in messages:
            if message.id in self._messages:
                raise MailBackendError(f"duplicate message id {message.id}")
            self._messages[message.id] = message
            self._order.append(message.id)
        self._labels: Dict[str, str] = dict(labels or {})
        self._path = path

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "SnapshotMailBackend":
        """Load a snapshot from ``path``.

        Raises:
          MailBackendError: If the file is missing or malformed.
        """

        target = Path(path)
        try:
            payload = yaml.safe_load(target.read_text(encoding="utf-8")) or {}
        except FileNotFoundError as exc:
            raise MailBackendError(f"mailbox snapshot missing: {target}") from exc
        except yaml.YAMLError as exc:
            raise MailBackendError(f"invalid mailbox snapshot {target}: {exc}") from exc
        if not isinstance(payload, dict):
            raise MailBackendError("mailbox snapshot must contain a mapping at the top-level")
        messages = [SnapshotMessage.from_dict(item) for item in payload.get("messages") or []]
        labels = {str(name): str(label_id) for name, label_id in (payload.get("labels") or {}).items()}
        return cls(messages, labels, path=target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "labels": dict(self._labels),
            "messages": [self._messages[message_id].to_dict() for message_id in self._order],
        }

    def save(self, path: Optional[Union[str, Path]] = None) -> None:
        """Write the snapshot back to disk, atomically replacing the file."""

        target = Path(path) if path is not None else self._path
        if target is None:
            raise MailBackendError("snapshot has no backing file")
        tmp_path = target.with_name(f".{target.name}.tmp")
        tmp_path.write_text(yaml.safe_dump(self.to_dict(), sort_keys=False, allow_unicode=True), encoding="utf-8")
        os.replace(tmp_path, target)

    def message(self, message_id: str) -> SnapshotMessage:
        try:
            return self._messages[message_id]
        except KeyError as exc:
            raise MailBackendError(f"message not found: {message_id}") from exc

    def _label_id(self, name: str) -> str:
        label_id = self._labels.get(name)
        if label_id is None:
            label_id = f"Label_{len(self._labels) + 1}"
            self._labels[name] = label_id
        return label_id

    @staticmethod
    def _matches(message: SnapshotMessage, terms: List[str]) -> bool:
        email = normalize_email_address(message.sender)
        if email is None:
            return not terms
        domain = sender_domain(email)
        for term in terms:
            if "@" in term:
                if normalize_email_address(term) != email:
                    return False
                continue
            wanted = normalize_domain(term)
            if wanted is None or domain is None:
                return False
            if domain != wanted and not domain.endswith(f".{wanted}"):
                return False
        return True

    @staticmethod
    def _parse_query(query: str) -> List[str]:
        terms = []
        for token in query.split():
            if not token.lower().startswith("from:"):
                raise MailBackendError(f"unsupported query term: {token}")
            value = token[len("from:"):].strip()
            if value:
                terms.append(value)
        return terms

    async def list_candidate_messages(
        self,
        query: str = "",
        max_results: int = 50,
        unassigned_only: bool = False,
    ) -> CandidatePage:
        terms = self._parse_query(query)
        selected: List[MessageSummary] = []
        matched = 0
        for message_id in self._order:
            message = self._messages[message_id]
            if unassigned_only and message.assignee:
                continue
            if not self._matches(message, terms):
                continue
            matched += 1
            if len(selected) < max_results:
                selected.append(MessageSummary(id=message.id, sender=message.sender, subject=message.subject))
        next_token = str(max_results) if matched > max_results else None
        return CandidatePage(messages=selected, next_page_token=next_token)

    async def get_routing_metadata(self, message_id: str) -> RoutingMetadata:
        message = self.message(message_id)
        return RoutingMetadata(
            sender_email=normalize_email_address(message.sender),
            current_label_ids=[self._label_id(name) for name in message.labels],
            subject=message.subject,
            current_assignee=message.assignee,
        )

    async def resolve_label_id(self, label_name: str) -> str:
        name = label_name.strip()
        if not name:
            raise MailBackendError("label name must not be empty")
        return self._label_id(name)

    async def apply_label_change(
        self,
        message_id: str,
        add: Sequence[str],
        remove: Sequence[str] = (),
    ) -> LabelChangeResult:
        message = self.message(message_id)
        for name in add:
            self._label_id(name)
            if name not in message.labels:
                message.labels.append(name)
        dropped = set(remove)
        message.labels = [name for name in message.labels if name not in dropped]
        return LabelChangeResult()

    async def set_assignment(
        self,
        message_id: str,
        assignee_email: str,
        *,
        force: bool = False,
    ) -> AssignmentResult:
        message = self.message(message_id)
        target = normalize_email_address(assignee_email)
        if target is None:
            raise MailBackendError(f"invalid assignee: {assignee_email}")
        if message.assignee and message.assignee != target and not force:
            return AssignmentResult(current_assignee_slug=_slug(message.assignee))
        message.assignee = target
        return AssignmentResult()


__all__ = ["SnapshotMessage", "SnapshotMailBackend"]
