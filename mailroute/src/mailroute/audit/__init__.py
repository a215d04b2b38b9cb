"""Audit sink used by the rule engine."""

from .log import AuditEntry, AuditLog, JsonlAuditLog, record_best_effort

__all__ = ["AuditEntry", "AuditLog", "JsonlAuditLog", "record_best_effort"]
