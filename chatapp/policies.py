"""Row-level authorization policies.

Every relation maps each operation to a predicate over (context, row).
Rows may be ORM objects, mappings or anything with the column names as
attributes. An operation without a predicate is denied, mirroring a table
with row level security enabled and no matching policy.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select

from .core import POLICY_DENIALS
from .errors import PolicyViolation
from .models.conversations import Conversation
from .models.participants import ConversationParticipant

logger = logging.getLogger(__name__)

AUTHENTICATED = 'authenticated'
SERVICE = 'service'

ACTIONS = ('select', 'insert', 'update', 'delete')


@dataclass(frozen=True)
class Caller:
    user_id: Optional[UUID]
    role: str = AUTHENTICATED

    @classmethod
    def service(cls) -> 'Caller':
        return cls(user_id=None, role=SERVICE)


@dataclass(frozen=True)
class PolicyContext:
    """What the predicates may know about the caller.

    memberships: conversation ids the caller participates in
    created: conversation ids the caller created
    """
    caller: Caller
    memberships: FrozenSet[UUID] = field(default_factory=frozenset)
    created: FrozenSet[UUID] = field(default_factory=frozenset)

    @property
    def uid(self) -> Optional[UUID]:
        return self.caller.user_id


Predicate = Callable[[PolicyContext, Any], bool]


def _field(row: Any, name: str) -> Any:
    if isinstance(row, dict):
        value = row.get(name)
    else:
        value = getattr(row, name, None)
    if isinstance(value, str):
        try:
            return UUID(value)
        except ValueError:
            return value
    return value


def _is_self(column: str) -> Predicate:
    def check(ctx: PolicyContext, row: Any) -> bool:
        return ctx.uid is not None and _field(row, column) == ctx.uid
    return check


def _participates(column: str) -> Predicate:
    def check(ctx: PolicyContext, row: Any) -> bool:
        return _field(row, column) in ctx.memberships
    return check


def _created(column: str) -> Predicate:
    def check(ctx: PolicyContext, row: Any) -> bool:
        return _field(row, column) in ctx.created
    return check


def _all(*predicates: Predicate) -> Predicate:
    def check(ctx: PolicyContext, row: Any) -> bool:
        return all(p(ctx, row) for p in predicates)
    return check


def _any(*predicates: Predicate) -> Predicate:
    def check(ctx: PolicyContext, row: Any) -> bool:
        return any(p(ctx, row) for p in predicates)
    return check


def _always(ctx: PolicyContext, row: Any) -> bool:
    return True


@dataclass(frozen=True)
class TablePolicy:
    """Predicates per operation; update applies to both old and new row."""

    select: Optional[Predicate] = None
    insert: Optional[Predicate] = None
    update: Optional[Predicate] = None
    delete: Optional[Predicate] = None


POLICIES: Dict[str, TablePolicy] = {
    'profiles': TablePolicy(
        select=_always,
        insert=_is_self('id'),
        update=_is_self('id'),
    ),
    'contacts': TablePolicy(
        select=_is_self('user_id'),
        insert=_is_self('user_id'),
        delete=_is_self('user_id'),
    ),
    'conversations': TablePolicy(
        select=_participates('id'),
        insert=_is_self('created_by'),
        update=_is_self('created_by'),
    ),
    'conversation_participants': TablePolicy(
        select=_any(_participates('conversation_id'), _is_self('user_id')),
        insert=_created('conversation_id'),
        # own row only: last_read_at bookkeeping
        update=_is_self('user_id'),
        delete=_is_self('user_id'),
    ),
    'messages': TablePolicy(
        select=_participates('conversation_id'),
        insert=_all(_is_self('sender_id'), _participates('conversation_id')),
        update=_is_self('sender_id'),
        delete=_is_self('sender_id'),
    ),
}


def get_policy(table: str) -> TablePolicy:
    """Fetch a table policy or raise KeyError."""
    return POLICIES[table]


def allows(ctx: PolicyContext, table: str, action: str, row: Any, new_row: Any = None) -> bool:
    if action not in ACTIONS:
        raise ValueError(f'unknown action {action!r}')
    if ctx.caller.role == SERVICE:
        return True
    if ctx.caller.role != AUTHENTICATED or ctx.uid is None:
        return False
    predicate = getattr(get_policy(table), action)
    if predicate is None:
        return False
    if not predicate(ctx, row):
        return False
    if action == 'update' and new_row is not None:
        return predicate(ctx, new_row)
    return True


def enforce(ctx: PolicyContext, table: str, action: str, row: Any, new_row: Any = None) -> None:
    if not allows(ctx, table, action, row, new_row):
        logger.info({'msg': 'policy_denied', 'table': table, 'action': action, 'caller': str(ctx.uid)})
        POLICY_DENIALS.labels(table=table, action=action).inc()
        raise PolicyViolation(table, action)


def visible(ctx: PolicyContext, table: str, rows: Iterable[Any]) -> List[Any]:
    return [row for row in rows if allows(ctx, table, 'select', row)]


async def load_policy_context(session, caller: Caller) -> PolicyContext:
    """Snapshot the caller's memberships; call again after writes that change them."""
    if caller.role != AUTHENTICATED or caller.user_id is None:
        return PolicyContext(caller=caller)
    member = await session.execute(
        select(ConversationParticipant.conversation_id).where(ConversationParticipant.user_id == caller.user_id)
    )
    created = await session.execute(
        select(Conversation.id).where(Conversation.created_by == caller.user_id)
    )
    return PolicyContext(
        caller=caller,
        memberships=frozenset(member.scalars().all()),
        created=frozenset(created.scalars().all()),
    )
