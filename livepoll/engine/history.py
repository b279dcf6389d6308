"""
History and moderation views over the ledger and the audit log.
"""
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence

from livepoll.shared.models import AuditLogEntry, IdentityStatus, VoteRecord, parse_timestamp


@dataclass
class VoteHistory:
    """
    Vote records of a poll (ledger order) and its audit entries (newest first).
    """
    votes: List[VoteRecord] = field(default_factory=list)
    audit: List[AuditLogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'votes': [vote.to_dict() for vote in self.votes],
            'audit': [entry.to_dict() for entry in self.audit],
        }


@dataclass(frozen=True)
class IdentitySummary:
    """Moderation row for one identity on one poll."""
    identity: str
    status: IdentityStatus
    last_vote_at: str
    vote_count: int
    active_vote_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identity': self.identity,
            'status': self.status.value,
            'last_vote_at': self.last_vote_at,
            'vote_count': self.vote_count,
            'active_vote_id': self.active_vote_id,
        }


def newest_first(entries: Sequence[AuditLogEntry]) -> List[AuditLogEntry]:
    """
    Sort audit entries newest first.

    Entries sharing a timestamp keep reverse append order, so the later
    append comes first.
    """
    indexed = list(enumerate(entries))
    indexed.sort(key=lambda item: (parse_timestamp(item[1].timestamp), item[0]), reverse=True)
    return [entry for _, entry in indexed]


def latest_vote(votes: Sequence[VoteRecord]) -> Optional[VoteRecord]:
    """
    Most recent record by timestamp; ledger order breaks ties.

    Args:
        votes: Records in ledger append order
    """
    if not votes:
        return None
    indexed = list(enumerate(votes))
    return max(indexed, key=lambda item: (parse_timestamp(item[1].timestamp), item[0]))[1]


def build_history(votes: Sequence[VoteRecord], audit: Sequence[AuditLogEntry]) -> VoteHistory:
    return VoteHistory(votes=list(votes), audit=newest_first(audit))


def identity_statuses(votes: Sequence[VoteRecord]) -> List[IdentitySummary]:
    """
    Per-identity status, in order of each identity's first vote.

    An identity is locked when its most recent record is unreleased.
    """
    grouped: Dict[str, List[VoteRecord]] = {}
    for vote in votes:
        grouped.setdefault(vote.identity, []).append(vote)

    summaries = []
    for identity, records in grouped.items():
        latest = latest_vote(records)
        locked = not latest.released
        summaries.append(IdentitySummary(
            identity=identity,
            status=IdentityStatus.LOCKED if locked else IdentityStatus.RELEASED,
            last_vote_at=latest.timestamp,
            vote_count=len(records),
            active_vote_id=latest.id if locked else None,
        ))
    return summaries
