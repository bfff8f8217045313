"""Security utilities for the Coinflip Mini App."""
from .audit import audit_logger, AuditEventType, AuditSeverity, AuditLogger

__all__ = ["audit_logger", "AuditEventType", "AuditSeverity", "AuditLogger"]
