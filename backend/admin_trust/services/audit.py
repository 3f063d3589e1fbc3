"""Hash-chained, tamper-evident audit ledger for privileged admin actions.

Every entry stores the previous entry's hash (`hash_prev`) and the SHA-256 of
its own canonical string (`hash_curr`). The canonical string is the
pipe-joined sequence

    actor_id|action|target_type|target_id|reason|before_json|after_json|
    ip_address|user_agent|hash_prev|created_at

with NULL fields rendered as ''. The first entry cites GENESIS_HASH.
Changing any stored field, deleting a row, or re-ordering rows is detected by
`AuditLedger.verify_audit_chain`.
"""
from __future__ import annotations
import enum
import hashlib
import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from admin_trust.models.audit import AuditEntry
from admin_trust.errors import AuditWriteError

logger = logging.getLogger(__name__)

GENESIS_SEED = 'ZENTRIO_ADMIN_AUDIT_GENESIS'
GENESIS_HASH = hashlib.sha256(GENESIS_SEED.encode('utf-8')).hexdigest()
USER_AGENT_MAX = 500
_MAX_APPEND_ATTEMPTS = 3

CANONICAL_FIELDS = (
    'actor_id', 'action', 'target_type', 'target_id', 'reason', 'before_json',
    'after_json', 'ip_address', 'user_agent', 'hash_prev', 'created_at',
)


def compute_hash(data: str) -> str:
    return hashlib.sha256(data.encode('utf-8')).hexdigest()


def build_canonical_string(entry: Any) -> str:
    """Pipe-join the hashed fields of `entry` (an AuditEntry or any object with those attributes)."""
    parts = []
    for name in CANONICAL_FIELDS:
        value = getattr(entry, name, None)
        parts.append('' if value is None else str(value))
    return '|'.join(parts)


def utc_timestamp(dt: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix, e.g. 2026-10-18T09:12:44.123Z."""
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def normalize_timestamp(value: str) -> str:
    """Render any ISO-8601 bound in the stored `created_at` format.

    Naive values are taken as UTC. Raises ValueError for unparseable input.
    """
    raw = str(value).strip()
    if raw.endswith(('Z', 'z')):
        raw = raw[:-1] + '+00:00'
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        raise ValueError(f'Invalid ISO-8601 timestamp: {value!r}')
    return utc_timestamp(dt)


def _snapshot_json(snapshot: Optional[Dict[str, Any]]) -> Optional[str]:
    if snapshot is None:
        return None
    return json.dumps(snapshot, separators=(',', ':'), default=str)


@dataclass
class AuditEventInput:
    actor_id: str
    action: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    reason: Optional[str] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class AuditQueryFilters:
    actor_id: Optional[str] = None
    action: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            'actorId': self.actor_id,
            'action': self.action,
            'targetType': self.target_type,
            'targetId': self.target_id,
            'startDate': self.start_date,
            'endDate': self.end_date,
        }


@dataclass
class AuditQueryResult:
    logs: List[AuditEntry]
    total: int
    has_more: bool


@dataclass
class AuditStats:
    total_events: int
    unique_actors: int
    actions_breakdown: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalEvents': self.total_events,
            'uniqueActors': self.unique_actors,
            'actionsBreakdown': dict(self.actions_breakdown),
        }


class IntegrityFailure(enum.Enum):
    GENESIS_MISMATCH = 'genesis_mismatch'
    HASH_MISMATCH = 'hash_mismatch'
    CHAIN_BROKEN = 'chain_broken'


@dataclass
class ChainVerification:
    valid: bool
    first_invalid_id: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[IntegrityFailure] = None
    checked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'valid': self.valid, 'firstInvalidId': self.first_invalid_id, 'checked': self.checked}
        if self.error:
            payload['error'] = self.error
            payload['failure'] = self.failure.value if self.failure else None
        return payload


class AuditLedger:
    """Append-only audit log with hash chaining.

    Appends are serialized by `_write_lock`, shared by every ledger in the
    process, so two writers can never read the same predecessor. The unique
    constraint on `hash_prev` backs this up at the store level. Readers do not
    take the lock; committed rows are immutable.
    """

    _write_lock = threading.Lock()

    def __init__(self, session_factory, now: Optional[Callable[[], datetime]] = None):
        self._session_factory = session_factory
        self._now = now or (lambda: datetime.now(timezone.utc))

    # --- Write path ---
    def write_audit_event(self, event: AuditEventInput) -> AuditEntry:
        if not event.actor_id or not event.action:
            raise ValueError('actor_id and action are required for audit events')
        with self._write_lock:
            for attempt in range(1, _MAX_APPEND_ATTEMPTS + 1):
                try:
                    return self._append(event)
                except IntegrityError as exc:
                    # another process appended between our read and insert
                    if attempt == _MAX_APPEND_ATTEMPTS:
                        logger.error('Audit append lost the predecessor race %d times', attempt)
                        raise AuditWriteError('Failed to write audit event') from exc
                    logger.warning('Audit append retry %d after predecessor conflict', attempt)
                except SQLAlchemyError as exc:
                    logger.error('Audit append failed for action %s: %s', event.action, exc)
                    raise AuditWriteError('Failed to write audit event') from exc
        raise AuditWriteError('Failed to write audit event')

    def _append(self, event: AuditEventInput) -> AuditEntry:
        with self._session_factory() as session:
            try:
                latest = session.execute(
                    select(AuditEntry.hash_curr).order_by(AuditEntry.id.desc()).limit(1)
                ).scalar_one_or_none()
                user_agent = event.user_agent[:USER_AGENT_MAX] if event.user_agent else None
                entry = AuditEntry(
                    actor_id=str(event.actor_id),
                    action=event.action,
                    target_type=event.target_type or None,
                    target_id=str(event.target_id) if event.target_id else None,
                    reason=event.reason or None,
                    before_json=_snapshot_json(event.before),
                    after_json=_snapshot_json(event.after),
                    ip_address=event.ip_address or None,
                    user_agent=user_agent,
                    hash_prev=latest or GENESIS_HASH,
                    created_at=utc_timestamp(self._now()),
                )
                entry.hash_curr = compute_hash(build_canonical_string(entry))
                session.add(entry)
                session.commit()
                session.refresh(entry)
            except SQLAlchemyError:
                session.rollback()
                raise
            logger.debug('Audit entry %s appended: %s', entry.id, entry.action)
            return entry

    # --- Read path ---
    def query_audit_log(self, filters: Optional[AuditQueryFilters] = None, limit: int = 50, offset: int = 0) -> AuditQueryResult:
        """Filtered page of entries, newest first.

        `start_date`/`end_date` are inclusive and accept any ISO-8601 form;
        a bound that does not parse raises ValueError.
        """
        filters = filters or AuditQueryFilters()
        conditions = []
        if filters.actor_id:
            conditions.append(AuditEntry.actor_id == filters.actor_id)
        if filters.action:
            conditions.append(AuditEntry.action == filters.action)
        if filters.target_type:
            conditions.append(AuditEntry.target_type == filters.target_type)
        if filters.target_id:
            conditions.append(AuditEntry.target_id == filters.target_id)
        # created_at has one fixed-width UTC format, so string order is time order
        if filters.start_date:
            conditions.append(AuditEntry.created_at >= normalize_timestamp(filters.start_date))
        if filters.end_date:
            conditions.append(AuditEntry.created_at <= normalize_timestamp(filters.end_date))
        count_stmt = select(func.count()).select_from(AuditEntry)
        rows_stmt = select(AuditEntry)
        if conditions:
            count_stmt = count_stmt.where(*conditions)
            rows_stmt = rows_stmt.where(*conditions)
        rows_stmt = rows_stmt.order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc()).limit(limit).offset(offset)
        with self._session_factory() as session:
            total = session.execute(count_stmt).scalar_one()
            logs = list(session.execute(rows_stmt).scalars())
        return AuditQueryResult(logs=logs, total=total, has_more=offset + len(logs) < total)

    def get_audit_history_for_target(self, target_type: str, target_id: str, limit: int = 20) -> List[AuditEntry]:
        with self._session_factory() as session:
            return list(session.execute(
                select(AuditEntry)
                .where(AuditEntry.target_type == target_type, AuditEntry.target_id == str(target_id))
                .order_by(AuditEntry.created_at.desc(), AuditEntry.id.desc())
                .limit(limit)
            ).scalars())

    def get_audit_stats(self) -> AuditStats:
        with self._session_factory() as session:
            total = session.execute(select(func.count()).select_from(AuditEntry)).scalar_one()
            actors = session.execute(select(func.count(func.distinct(AuditEntry.actor_id)))).scalar_one()
            breakdown = {
                action: count
                for action, count in session.execute(
                    select(AuditEntry.action, func.count()).group_by(AuditEntry.action)
                )
            }
        return AuditStats(total_events=total or 0, unique_actors=actors or 0, actions_breakdown=breakdown)

    # --- Integrity ---
    def verify_audit_chain(self) -> ChainVerification:
        """Recompute the whole chain in id order and report the first failure, if any."""
        checked = 0
        previous: Optional[AuditEntry] = None
        with self._session_factory() as session:
            rows = session.execute(select(AuditEntry).order_by(AuditEntry.id.asc())).scalars()
            for entry in rows:
                if previous is None:
                    if entry.hash_prev != GENESIS_HASH:
                        return self._failure(entry.id, 'Genesis hash mismatch', IntegrityFailure.GENESIS_MISMATCH, checked)
                elif entry.hash_prev != previous.hash_curr:
                    return self._failure(
                        entry.id,
                        f'Chain broken between entries {previous.id} and {entry.id}',
                        IntegrityFailure.CHAIN_BROKEN,
                        checked,
                    )
                if compute_hash(build_canonical_string(entry)) != entry.hash_curr:
                    return self._failure(entry.id, f'Hash mismatch at entry {entry.id}', IntegrityFailure.HASH_MISMATCH, checked)
                checked += 1
                previous = entry
        return ChainVerification(valid=True, checked=checked)

    @staticmethod
    def _failure(entry_id: int, error: str, failure: IntegrityFailure, checked: int) -> ChainVerification:
        logger.warning('Audit chain verification failed at entry %s: %s', entry_id, error)
        return ChainVerification(valid=False, first_invalid_id=entry_id, error=error, failure=failure, checked=checked)
