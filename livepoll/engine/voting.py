"""
Voting engine: the only writer of the vote ledger and the audit log.

An identity holds a lock on a poll while it has an unreleased vote there.
cast_vote acquires the lock, release_identity drops it, and every accepted
transition appends exactly one audit entry in the same atomic write.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Any, List, Optional

from prometheus_client import Counter

from livepoll.engine.catalog import PollCatalog
from livepoll.engine.errors import (
    AlreadyVoted,
    IntegrityFault,
    NoActiveVote,
    OptionNotFound,
    PollClosed,
    VotingError,
)
from livepoll.engine.history import (
    IdentitySummary,
    VoteHistory,
    build_history,
    identity_statuses,
    latest_vote,
)
from livepoll.engine.results import PollResults, project_poll
from livepoll.shared.models import (
    AuditAction,
    create_audit_entry,
    create_vote_record,
    get_current_timestamp,
)
from livepoll.storage.base import DuplicateActiveVote, LedgerStorage

logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    'livepoll_votes_cast_total',
    'Total number of accepted votes',
    ['action']
)

vote_rejections = Counter(
    'livepoll_vote_rejections_total',
    'Total number of rejected voting operations',
    ['operation', 'error_type']
)

releases_total = Counter(
    'livepoll_releases_total',
    'Total number of released identities'
)

integrity_faults = Counter(
    'livepoll_integrity_faults_total',
    'Total number of (poll, identity) pairs found holding more than one active vote'
)


@dataclass
class OperationResult:
    """Outcome of a ledger mutation."""
    success: bool
    message: str
    error: Optional[str] = None
    action: Optional[AuditAction] = None
    vote_id: Optional[str] = None

    @classmethod
    def failure(cls, error: VotingError) -> 'OperationResult':
        return cls(success=False, message=error.message, error=error.error_code)

    def to_dict(self) -> Dict[str, Any]:
        data = {'success': self.success, 'message': self.message}
        if self.error:
            data['error'] = self.error
        if self.action:
            data['action'] = self.action.value
        if self.vote_id:
            data['vote_id'] = self.vote_id
        return data


@dataclass
class VoterStatus:
    """Lock state of one identity on one poll."""
    poll_id: str
    identity: str
    has_active_vote: bool
    active_vote_id: Optional[str] = None
    active_option_id: Optional[str] = None
    has_released_votes: bool = False

    @property
    def can_vote(self) -> bool:
        return not self.has_active_vote

    def to_dict(self) -> Dict[str, Any]:
        return {
            'poll_id': self.poll_id,
            'identity': self.identity,
            'has_active_vote': self.has_active_vote,
            'active_vote_id': self.active_vote_id,
            'active_option_id': self.active_option_id,
            'can_vote': self.can_vote,
            'next_vote_is_revote': self.has_released_votes,
        }


class VotingEngine:
    """
    Validates and executes votes and releases against a storage backend.

    Args:
        storage: Ledger, audit and catalog backend
        enforce_option_check: Reject option ids that are not on the poll
        enforce_active_polls: Reject votes on polls whose active flag is off
        clock: Returns the timestamp stamped on new records
    """

    def __init__(
        self,
        storage: LedgerStorage,
        enforce_option_check: bool = True,
        enforce_active_polls: bool = True,
        clock: Callable[[], str] = get_current_timestamp
    ):
        self.storage = storage
        self.catalog = PollCatalog(storage)
        self.enforce_option_check = enforce_option_check
        self.enforce_active_polls = enforce_active_polls
        self.clock = clock

    # --- Read operations ---

    def list_polls(self) -> List[PollResults]:
        """Every poll with counts recomputed from the ledger."""
        return [
            project_poll(poll, self.storage.list_votes(poll.id))
            for poll in self.catalog.list()
        ]

    def get_results(self, poll_id: str) -> PollResults:
        poll = self.catalog.get(poll_id)
        return project_poll(poll, self.storage.list_votes(poll_id))

    def get_history(self, poll_id: str) -> VoteHistory:
        """
        All vote records of a poll and its audit trail, newest entry first.

        Raises:
            PollNotFound: If the poll does not exist.
        """
        self.catalog.get(poll_id)
        votes, audit = self.storage.read_history(poll_id)
        return build_history(votes, audit)

    def identity_statuses(self, poll_id: str) -> List[IdentitySummary]:
        self.catalog.get(poll_id)
        return identity_statuses(self.storage.list_votes(poll_id))

    def voter_status(self, poll_id: str, identity: str) -> VoterStatus:
        self.catalog.get(poll_id)
        records = self.storage.list_votes(poll_id, identity)
        active = latest_vote([vote for vote in records if vote.is_active])
        return VoterStatus(
            poll_id=poll_id,
            identity=identity,
            has_active_vote=active is not None,
            active_vote_id=active.id if active else None,
            active_option_id=active.option_id if active else None,
            has_released_votes=any(vote.released for vote in records),
        )

    # --- Write operations ---

    def cast_vote(self, poll_id: str, option_id: str, identity: str) -> OperationResult:
        """
        Cast a vote for an identity.

        Returns a failed result (PollNotFound, OptionNotFound, PollClosed or
        AlreadyVoted) without touching the ledger when validation fails.
        """
        try:
            return self._cast_vote(poll_id, option_id, identity)
        except VotingError as e:
            vote_rejections.labels(operation='cast_vote', error_type=e.error_code).inc()
            logger.warning(
                f"Vote rejected: poll={poll_id}, option={option_id}, "
                f"identity={identity}, error={e.error_code}"
            )
            return OperationResult.failure(e)

    def _cast_vote(self, poll_id: str, option_id: str, identity: str) -> OperationResult:
        poll = self.catalog.get(poll_id)

        option = poll.get_option(option_id)
        if option is None and self.enforce_option_check:
            raise OptionNotFound()

        if not poll.is_active and self.enforce_active_polls:
            raise PollClosed()

        with self.storage.lock(poll_id, identity):
            records = self.storage.list_votes(poll_id, identity)
            if any(vote.is_active for vote in records):
                raise AlreadyVoted()

            is_revote = any(vote.released for vote in records)
            action = AuditAction.REVOTE if is_revote else AuditAction.VOTE
            option_text = option.text if option else option_id
            if is_revote:
                details = f"Revoted. New Option: {option_text}"
            else:
                details = f"Voted for: {option_text}"

            timestamp = self.clock()
            vote = create_vote_record(poll_id, option_id, identity, timestamp)
            entry = create_audit_entry(action, poll_id, identity, details, timestamp)

            try:
                self.storage.append_vote(vote, entry)
            except DuplicateActiveVote as e:
                raise AlreadyVoted() from e

        votes_cast.labels(action=action.value).inc()
        logger.info(
            f"Vote accepted: id={vote.id}, poll={poll_id}, option={option_id}, "
            f"identity={identity}, action={action.value}"
        )
        return OperationResult(
            success=True,
            message="Vote cast successfully.",
            action=action,
            vote_id=vote.id
        )

    def release_identity(self, poll_id: str, identity: str) -> OperationResult:
        """
        Release the active vote of an identity so it may vote again.

        Returns a failed result (PollNotFound or NoActiveVote) without side
        effects when there is nothing to release. If the ledger holds more
        than one active vote for the identity, the newest one is released
        and the result reports IntegrityFault. That release is applied, so the
        failed result still carries action RELEASE and the released vote_id.
        """
        try:
            return self._release_identity(poll_id, identity)
        except VotingError as e:
            vote_rejections.labels(operation='release_identity', error_type=e.error_code).inc()
            logger.warning(
                f"Release rejected: poll={poll_id}, identity={identity}, error={e.error_code}"
            )
            result = OperationResult.failure(e)
            if isinstance(e, IntegrityFault):
                # The newest vote was released before the fault was reported
                result.action = AuditAction.RELEASE
                result.vote_id = e.vote_id
            return result

    def _release_identity(self, poll_id: str, identity: str) -> OperationResult:
        self.catalog.get(poll_id)

        with self.storage.lock(poll_id, identity):
            active = [vote for vote in self.storage.list_votes(poll_id, identity) if vote.is_active]
            if not active:
                raise NoActiveVote()

            target = latest_vote(active)
            entry = create_audit_entry(
                AuditAction.RELEASE,
                poll_id,
                identity,
                f"Admin released IP. Previous Vote ID: {target.id}",
                self.clock()
            )
            released = self.storage.release_vote(target, entry)

        releases_total.inc()
        logger.info(f"Identity released: poll={poll_id}, identity={identity}, vote={released.id}")

        if len(active) > 1:
            integrity_faults.inc()
            remaining = len(active) - 1
            logger.error(
                f"Integrity fault: {identity} held {len(active)} active votes on {poll_id}; "
                f"released {released.id}, {remaining} still active"
            )
            raise IntegrityFault(
                f"Released vote {released.id}, but {remaining} other active vote(s) "
                f"remain for this IP. The ledger needs repair.",
                vote_id=released.id
            )

        return OperationResult(
            success=True,
            message="IP released successfully.",
            action=AuditAction.RELEASE,
            vote_id=released.id
        )
