"""
Shared models and helpers for the LivePoll voting core.

This package contains common code used across the engine, storage backends
and the HTTP API:
- Data models (Poll, PollOption, VoteRecord, AuditLogEntry, enums)
- Identifier and timestamp helpers
"""

from .models import (
    AuditAction,
    UserRole,
    IdentityStatus,
    Poll,
    PollOption,
    VoteRecord,
    AuditLogEntry,
    create_vote_record,
    create_audit_entry,
    generate_vote_id,
    generate_audit_id,
    get_current_timestamp,
    parse_timestamp,
)

__all__ = [
    'AuditAction',
    'UserRole',
    'IdentityStatus',
    'Poll',
    'PollOption',
    'VoteRecord',
    'AuditLogEntry',
    'create_vote_record',
    'create_audit_entry',
    'generate_vote_id',
    'generate_audit_id',
    'get_current_timestamp',
    'parse_timestamp',
]
