"""
Shared data models and utilities for the LivePoll voting core.

This module contains:
- Poll / PollOption: catalog definitions
- VoteRecord: one row of the vote ledger
- AuditLogEntry: one row of the audit trail
- Identifier and timestamp helpers shared by every storage backend
"""

import json
import uuid
from dataclasses import dataclass, asdict, field, replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class AuditAction(str, Enum):
    """Kinds of state transitions recorded in the audit trail."""
    VOTE = "VOTE"
    REVOTE = "REVOTE"
    RELEASE = "RELEASE"


class UserRole(str, Enum):
    """Role flag carried by callers of the API."""
    GUEST = "GUEST"
    USER = "USER"
    ADMIN = "ADMIN"


class IdentityStatus(str, Enum):
    """Moderation status of an identity on a poll."""
    LOCKED = "locked"
    RELEASED = "released"


def get_current_timestamp() -> str:
    """
    Get current UTC timestamp in ISO format.

    Returns:
        str: ISO format timestamp with Z suffix
    """
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp produced by get_current_timestamp()."""
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def generate_vote_id() -> str:
    """Generate a globally unique vote record identifier."""
    return f"vote_{uuid.uuid4().hex}"


def generate_audit_id() -> str:
    """Generate a unique audit entry identifier."""
    return f"audit_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class PollOption:
    """A single answer of a poll. Counts are never stored here."""
    id: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PollOption':
        return cls(id=data['id'], text=data['text'])


@dataclass
class Poll:
    """
    Poll definition from the catalog.

    Attributes:
        id: Unique poll identifier
        question: Question text shown to voters
        options: Ordered answers; identifiers unique within the poll
        is_active: Whether the poll accepts votes
        created_at: ISO format creation timestamp
    """
    id: str
    question: str
    options: List[PollOption]
    is_active: bool = True
    created_at: str = field(default_factory=get_current_timestamp)

    def __post_init__(self):
        seen = set()
        for option in self.options:
            if option.id in seen:
                raise ValueError(f"Duplicate option id {option.id!r} in poll {self.id!r}")
            seen.add(option.id)

    def get_option(self, option_id: str) -> Optional[PollOption]:
        """Return the option with the given id, or None."""
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'question': self.question,
            'options': [option.to_dict() for option in self.options],
            'is_active': self.is_active,
            'created_at': self.created_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Poll':
        """Create Poll from dictionary. Accepts camelCase keys from JSON catalogs."""
        created_at = data.get('created_at') or data.get('createdAt') or get_current_timestamp()
        is_active = data.get('is_active', data.get('isActive', True))
        return cls(
            id=data['id'],
            question=data['question'],
            options=[PollOption.from_dict(option) for option in data.get('options', [])],
            is_active=bool(is_active),
            created_at=created_at,
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'Poll':
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class VoteRecord:
    """
    One entry of the vote ledger.

    Only the released flag ever changes after creation, and only from
    False to True. Use mark_released() to get the updated record.

    Attributes:
        id: Globally unique vote identifier
        poll_id: Poll voted on
        option_id: Chosen option
        identity: Voter identity (IP address string)
        timestamp: ISO format timestamp when the vote was cast
        released: True once an administrator released the identity
    """
    id: str
    poll_id: str
    option_id: str
    identity: str
    timestamp: str
    released: bool = False

    @property
    def is_active(self) -> bool:
        return not self.released

    def mark_released(self) -> 'VoteRecord':
        if self.released:
            raise ValueError(f"Vote {self.id} is already released")
        return replace(self, released=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert to JSON string for storage."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VoteRecord':
        """Create VoteRecord from dictionary."""
        return cls(**data)

    @classmethod
    def from_json(cls, json_str: str) -> 'VoteRecord':
        """Create VoteRecord from JSON string."""
        return cls.from_dict(json.loads(json_str))


@dataclass(frozen=True)
class AuditLogEntry:
    """
    Immutable, human-readable record of one state transition.

    Attributes:
        id: Unique audit identifier
        action: VOTE, REVOTE or RELEASE
        poll_id: Poll the transition happened on
        identity: Identity affected
        details: Free-text description
        timestamp: ISO format timestamp of the transition
    """
    id: str
    action: AuditAction
    poll_id: str
    identity: str
    details: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['action'] = AuditAction(self.action).value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogEntry':
        values = dict(data)
        values['action'] = AuditAction(values['action'])
        return cls(**values)

    @classmethod
    def from_json(cls, json_str: str) -> 'AuditLogEntry':
        return cls.from_dict(json.loads(json_str))


def create_vote_record(
    poll_id: str,
    option_id: str,
    identity: str,
    timestamp: Optional[str] = None
) -> VoteRecord:
    """
    Create an active VoteRecord with a fresh id.

    Args:
        poll_id: Poll identifier
        option_id: Chosen option identifier
        identity: Voter identity
        timestamp: Optional timestamp (defaults to current time)

    Returns:
        VoteRecord: New unreleased record
    """
    return VoteRecord(
        id=generate_vote_id(),
        poll_id=poll_id,
        option_id=option_id,
        identity=identity,
        timestamp=timestamp or get_current_timestamp(),
        released=False,
    )


def create_audit_entry(
    action: AuditAction,
    poll_id: str,
    identity: str,
    details: str,
    timestamp: Optional[str] = None
) -> AuditLogEntry:
    """Create an AuditLogEntry with a fresh id."""
    return AuditLogEntry(
        id=generate_audit_id(),
        action=action,
        poll_id=poll_id,
        identity=identity,
        details=details,
        timestamp=timestamp or get_current_timestamp(),
    )
