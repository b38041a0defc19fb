import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, or_, func
from sqlalchemy.exc import IntegrityError

from .models import AsyncSessionLocal, as_dict, utcnow
from .models.auth_users import AuthUser
from .models.session_tokens import SessionToken
from .models.profiles import Profile
from .models.contacts import Contact
from .models.conversations import Conversation, PRIVATE, GROUP
from .models.participants import ConversationParticipant
from .models.messages import Message
from .auth import hash_password, verify_password, create_access_token, generate_refresh_token, hash_token
from .config import settings
from .core import MESSAGES_SENT
from .errors import NotFound, Conflict, ValidationFailed
from .policies import Caller, PolicyContext, enforce, visible, allows, load_policy_context
from .realtime import feed, ChangeEvent, INSERT, UPDATE, DELETE
from .aggregation import summarize_conversations

logger = logging.getLogger(__name__)


async def _publish(table: str, type_: str, new: dict = None, old: dict = None):
    await feed.publish(ChangeEvent(table=table, type=type_, new=new or {}, old=old or {}))


async def _commit(session, conflict_detail: str):
    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.info({'msg': 'integrity_error', 'error': str(e.orig)})
        raise Conflict(conflict_detail)


# identity

async def register_user(email: str, password: str, display_name: str):
    email = email.strip().lower()
    display_name = display_name.strip()
    if not display_name:
        raise ValidationFailed('display_name must not be empty')
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(AuthUser.id).where(AuthUser.email == email))
        if q.scalars().first():
            raise Conflict('Email already registered')
        user = AuthUser(email=email, hashed_password=hash_password(password))
        session.add(user)
        await session.flush()
        # sign-up writes the profile as the new user, so the insert policy applies
        ctx = PolicyContext(caller=Caller(user_id=user.id))
        profile = Profile(id=user.id, email=email, display_name=display_name, status='offline')
        enforce(ctx, 'profiles', 'insert', profile)
        session.add(profile)
        await _commit(session, 'Email already registered')
    logger.info({'msg': 'user_registered', 'user_id': str(profile.id)})
    await _publish('profiles', INSERT, new=as_dict(profile))
    return profile


async def _set_status(session, caller: Caller, status: str) -> Optional[Profile]:
    profile = await session.get(Profile, caller.user_id)
    if profile is None:
        return None
    ctx = PolicyContext(caller=caller)
    old = as_dict(profile)
    enforce(ctx, 'profiles', 'update', old, {**old, 'status': status})
    profile.status = status
    profile.updated_at = utcnow()
    await session.commit()
    await _publish('profiles', UPDATE, new=as_dict(profile), old=old)
    return profile


async def authenticate_user(email: str, password: str, device_id: str = None, user_agent: str = None):
    email = email.strip().lower()
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(AuthUser).where(AuthUser.email == email))
        user = q.scalars().first()
        if not user or not verify_password(password, user.hashed_password):
            return None
        access = create_access_token(user.id, user.email)
        refresh = generate_refresh_token()
        expires_at = utcnow() + timedelta(days=settings.refresh_token_ttl_days)
        st = SessionToken(user_id=user.id, device_id=device_id, token_hash=hash_token(refresh),
                          user_agent=user_agent, expires_at=expires_at)
        session.add(st)
        await session.commit()
        await _set_status(session, Caller(user_id=user.id), 'online')
        logger.info({'msg': 'user_logged_in', 'user_id': str(user.id)})
        return {'access_token': access, 'token_type': 'bearer', 'refresh_token': refresh}


async def refresh_access_token(refresh_token: str):
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(SessionToken).where(
            SessionToken.token_hash == hash_token(refresh_token),
            SessionToken.revoked_at.is_(None),
        ))
        st = q.scalars().first()
        if not st or _expired(st.expires_at):
            return None
        user = await session.get(AuthUser, st.user_id)
        if not user:
            return None
        return {'access_token': create_access_token(user.id, user.email), 'token_type': 'bearer'}


def _expired(expires_at: datetime) -> bool:
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= utcnow()


async def revoke_refresh_token(refresh_token: str, user_id: UUID) -> bool:
    """Revoke one of ``user_id``'s refresh tokens; other users' tokens are left alone."""
    async with AsyncSessionLocal() as session:
        q = await session.execute(select(SessionToken).where(
            SessionToken.token_hash == hash_token(refresh_token),
            SessionToken.user_id == user_id,
            SessionToken.revoked_at.is_(None),
        ))
        st = q.scalars().first()
        if not st:
            return False
        st.revoked_at = utcnow()
        await session.commit()
        return True


async def sign_out(caller: Caller, refresh_token: str = None):
    if refresh_token:
        await revoke_refresh_token(refresh_token, caller.user_id)
    async with AsyncSessionLocal() as session:
        await _set_status(session, caller, 'offline')
    logger.info({'msg': 'user_logged_out', 'user_id': str(caller.user_id)})


# profiles

async def get_profile(caller: Caller, user_id: UUID) -> Profile:
    async with AsyncSessionLocal() as session:
        ctx = PolicyContext(caller=caller)
        profile = await session.get(Profile, user_id)
        if profile is None or not allows(ctx, 'profiles', 'select', profile):
            raise NotFound('Profile not found')
        return profile


async def list_profiles(caller: Caller, search: str = None, exclude_self: bool = True) -> List[Profile]:
    async with AsyncSessionLocal() as session:
        ctx = PolicyContext(caller=caller)
        q = select(Profile).order_by(Profile.display_name)
        if exclude_self:
            q = q.where(Profile.id != caller.user_id)
        if search:
            pattern = f'%{search.strip().lower()}%'
            q = q.where(or_(func.lower(Profile.display_name).like(pattern), func.lower(Profile.email).like(pattern)))
        res = await session.execute(q)
        return visible(ctx, 'profiles', res.scalars().all())


async def update_profile(caller: Caller, display_name: str = None, avatar_url: str = None, status: str = None) -> Profile:
    async with AsyncSessionLocal() as session:
        ctx = PolicyContext(caller=caller)
        profile = await session.get(Profile, caller.user_id)
        if profile is None:
            raise NotFound('Profile not found')
        old = as_dict(profile)
        changes = {}
        if display_name is not None:
            if not display_name.strip():
                raise ValidationFailed('display_name must not be empty')
            changes['display_name'] = display_name.strip()
        if avatar_url is not None:
            changes['avatar_url'] = avatar_url or None
        if status is not None:
            changes['status'] = status
        enforce(ctx, 'profiles', 'update', old, {**old, **changes})
        for key, value in changes.items():
            setattr(profile, key, value)
        profile.updated_at = utcnow()
        await session.commit()
    await _publish('profiles', UPDATE, new=as_dict(profile), old=old)
    return profile


# contacts

async def list_contacts(caller: Caller) -> List[dict]:
    async with AsyncSessionLocal() as session:
        ctx = PolicyContext(caller=caller)
        res = await session.execute(
            select(Contact, Profile)
            .join(Profile, Profile.id == Contact.contact_id)
            .where(Contact.user_id == caller.user_id)
            .order_by(Profile.display_name)
        )
        rows = []
        for contact, profile in res.all():
            if allows(ctx, 'contacts', 'select', contact):
                rows.append({**as_dict(contact), 'contact_profile': profile})
        return rows


async def _insert_contact(session, ctx: PolicyContext, user_id: UUID, contact_id: UUID) -> Optional[Contact]:
    q = await session.execute(select(Contact).where(Contact.user_id == user_id, Contact.contact_id == contact_id))
    if q.scalars().first():
        return None
    contact = Contact(user_id=user_id, contact_id=contact_id)
    enforce(ctx, 'contacts', 'insert', contact)
    session.add(contact)
    await session.flush()
    return contact


async def add_contact(caller: Caller, contact_id: UUID) -> dict:
    """Link caller and contact both ways; the reverse row is written by the service role."""
    if contact_id == caller.user_id:
        raise ValidationFailed('You cannot add yourself as a contact')
    async with AsyncSessionLocal() as session:
        other = await session.get(Profile, contact_id)
        if other is None:
            raise NotFound('Profile not found')
        mine = await _insert_contact(session, PolicyContext(caller=caller), caller.user_id, contact_id)
        reverse = await _insert_contact(session, PolicyContext(caller=Caller.service()), contact_id, caller.user_id)
        await _commit(session, 'Contact already exists')
        if mine is None:
            q = await session.execute(select(Contact).where(
                Contact.user_id == caller.user_id, Contact.contact_id == contact_id))
            row = q.scalars().first()
        else:
            row = mine
    for created in (mine, reverse):
        if created is not None:
            await _publish('contacts', INSERT, new=as_dict(created))
    logger.info({'msg': 'contact_added', 'user_id': str(caller.user_id), 'contact_id': str(contact_id)})
    return {**as_dict(row), 'contact_profile': other}


async def remove_contact(caller: Caller, contact_id: UUID):
    async with AsyncSessionLocal() as session:
        ctx = PolicyContext(caller=caller)
        q = await session.execute(select(Contact).where(
            Contact.user_id == caller.user_id, Contact.contact_id == contact_id))
        mine = q.scalars().first()
        if mine is None or not allows(ctx, 'contacts', 'select', mine):
            raise NotFound('Contact not found')
        enforce(ctx, 'contacts', 'delete', mine)
        q = await session.execute(select(Contact).where(
            Contact.user_id == contact_id, Contact.contact_id == caller.user_id))
        reverse = q.scalars().first()
        removed = [as_dict(mine)]
        await session.delete(mine)
        if reverse is not None:
            enforce(PolicyContext(caller=Caller.service()), 'contacts', 'delete', reverse)
            removed.append(as_dict(reverse))
            await session.delete(reverse)
        await session.commit()
    for old in removed:
        await _publish('contacts', DELETE, old=old)


# conversations

async def _summaries(session, ctx: PolicyContext, conversation_ids) -> List[dict]:
    conversation_ids = [cid for cid in conversation_ids if cid in ctx.memberships]
    if not conversation_ids:
        return []
    convs = await session.execute(select(Conversation).where(Conversation.id.in_(conversation_ids)))
    parts = await session.execute(
        select(ConversationParticipant).where(ConversationParticipant.conversation_id.in_(conversation_ids))
    )
    msgs = await session.execute(
        select(Message).where(Message.conversation_id.in_(conversation_ids)).order_by(Message.created_at.desc())
    )
    participants = visible(ctx, 'conversation_participants', parts.scalars().all())
    user_ids = {p.user_id for p in participants}
    profiles = await session.execute(select(Profile).where(Profile.id.in_(list(user_ids))))
    return summarize_conversations(
        ctx.uid,
        visible(ctx, 'conversations', convs.scalars().all()),
        participants,
        visible(ctx, 'profiles', profiles.scalars().all()),
        visible(ctx, 'messages', msgs.scalars().all()),
    )


async def list_conversations(caller: Caller) -> List[dict]:
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        return await _summaries(session, ctx, ctx.memberships)


async def get_conversation(caller: Caller, conversation_id: UUID) -> dict:
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        summaries = await _summaries(session, ctx, [conversation_id])
        if not summaries:
            raise NotFound('Conversation not found')
        return summaries[0]


async def _find_private_conversation(session, ctx: PolicyContext, contact_id: UUID) -> Optional[UUID]:
    res = await session.execute(
        select(Conversation).where(Conversation.id.in_(list(ctx.memberships)), Conversation.type == PRIVATE)
    )
    for conv in visible(ctx, 'conversations', res.scalars().all()):
        parts = await session.execute(
            select(ConversationParticipant).where(ConversationParticipant.conversation_id == conv.id)
        )
        user_ids = {p.user_id for p in visible(ctx, 'conversation_participants', parts.scalars().all())}
        if user_ids == {ctx.uid, contact_id}:
            return conv.id
    return None


async def _create_conversation(session, caller: Caller, type_: str, name: Optional[str], member_ids) -> tuple:
    ctx = await load_policy_context(session, caller)
    conv = Conversation(type=type_, name=name, created_by=caller.user_id)
    enforce(ctx, 'conversations', 'insert', conv)
    session.add(conv)
    await session.flush()
    # the creator check for participant rows needs the conversation we just made
    ctx = await load_policy_context(session, caller)
    participants = []
    for user_id in [caller.user_id, *member_ids]:
        p = ConversationParticipant(conversation_id=conv.id, user_id=user_id)
        enforce(ctx, 'conversation_participants', 'insert', p)
        session.add(p)
        participants.append(p)
    await _commit(session, 'Duplicate participant')
    return conv, participants


async def _publish_created(conv: Conversation, participants):
    await _publish('conversations', INSERT, new=as_dict(conv))
    for p in participants:
        await _publish('conversation_participants', INSERT, new=as_dict(p))


async def create_private_conversation(caller: Caller, contact_id: UUID) -> tuple:
    """Return (summary, created). Lookup and insert are separate statements, so
    two concurrent calls for the same pair can both create a conversation."""
    if contact_id == caller.user_id:
        raise ValidationFailed('A private conversation needs another participant')
    async with AsyncSessionLocal() as session:
        if await session.get(Profile, contact_id) is None:
            raise NotFound('Profile not found')
        ctx = await load_policy_context(session, caller)
        existing = await _find_private_conversation(session, ctx, contact_id)
        if existing is not None:
            return (await _summaries(session, ctx, [existing]))[0], False
        conv, participants = await _create_conversation(session, caller, PRIVATE, None, [contact_id])
    await _publish_created(conv, participants)
    logger.info({'msg': 'conversation_created', 'type': PRIVATE, 'conversation_id': str(conv.id)})
    return await get_conversation(caller, conv.id), True


async def create_group_conversation(caller: Caller, name: str, member_ids: List[UUID]) -> dict:
    name = (name or '').strip()
    if not name:
        raise ValidationFailed('Group name must not be empty')
    members = list(dict.fromkeys(m for m in member_ids if m != caller.user_id))
    if not members:
        raise ValidationFailed('Select at least one contact')
    async with AsyncSessionLocal() as session:
        res = await session.execute(select(Profile.id).where(Profile.id.in_(members)))
        missing = set(members) - set(res.scalars().all())
        if missing:
            raise NotFound('Profile not found')
        conv, participants = await _create_conversation(session, caller, GROUP, name, members)
    await _publish_created(conv, participants)
    logger.info({'msg': 'conversation_created', 'type': GROUP, 'conversation_id': str(conv.id)})
    return await get_conversation(caller, conv.id)


async def _visible_conversation(session, ctx: PolicyContext, conversation_id: UUID) -> Conversation:
    conv = await session.get(Conversation, conversation_id)
    if conv is None or not allows(ctx, 'conversations', 'select', conv):
        raise NotFound('Conversation not found')
    return conv


async def rename_conversation(caller: Caller, conversation_id: UUID, name: str) -> dict:
    name = (name or '').strip()
    if not name:
        raise ValidationFailed('Group name must not be empty')
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        conv = await _visible_conversation(session, ctx, conversation_id)
        if conv.type != GROUP:
            raise ValidationFailed('Only group conversations have a name')
        old = as_dict(conv)
        enforce(ctx, 'conversations', 'update', old, {**old, 'name': name})
        conv.name = name
        conv.updated_at = utcnow()
        await session.commit()
    await _publish('conversations', UPDATE, new=as_dict(conv), old=old)
    return await get_conversation(caller, conversation_id)


async def list_participants(caller: Caller, conversation_id: UUID) -> List[dict]:
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        res = await session.execute(
            select(ConversationParticipant, Profile)
            .join(Profile, Profile.id == ConversationParticipant.user_id)
            .where(ConversationParticipant.conversation_id == conversation_id)
            .order_by(ConversationParticipant.joined_at)
        )
        return [
            {**as_dict(p), 'profile': profile}
            for p, profile in res.all()
            if allows(ctx, 'conversation_participants', 'select', p)
        ]


async def add_participant(caller: Caller, conversation_id: UUID, user_id: UUID) -> dict:
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        conv = await _visible_conversation(session, ctx, conversation_id)
        if conv.type != GROUP:
            raise ValidationFailed('Participants can only be added to group conversations')
        profile = await session.get(Profile, user_id)
        if profile is None:
            raise NotFound('Profile not found')
        p = ConversationParticipant(conversation_id=conversation_id, user_id=user_id)
        enforce(ctx, 'conversation_participants', 'insert', p)
        session.add(p)
        await _commit(session, 'Already a participant')
    await _publish('conversation_participants', INSERT, new=as_dict(p))
    return {**as_dict(p), 'profile': profile}


async def _own_participant_row(session, ctx: PolicyContext, conversation_id: UUID) -> ConversationParticipant:
    q = await session.execute(select(ConversationParticipant).where(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id == ctx.uid,
    ))
    row = q.scalars().first()
    if row is None or not allows(ctx, 'conversation_participants', 'select', row):
        raise NotFound('Conversation not found')
    return row


async def mark_as_read(caller: Caller, conversation_id: UUID) -> ConversationParticipant:
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        row = await _own_participant_row(session, ctx, conversation_id)
        old = as_dict(row)
        now = utcnow()
        enforce(ctx, 'conversation_participants', 'update', old, {**old, 'last_read_at': now})
        row.last_read_at = now
        await session.commit()
    await _publish('conversation_participants', UPDATE, new=as_dict(row), old=old)
    return row


async def leave_conversation(caller: Caller, conversation_id: UUID):
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        row = await _own_participant_row(session, ctx, conversation_id)
        enforce(ctx, 'conversation_participants', 'delete', row)
        old = as_dict(row)
        await session.delete(row)
        await session.commit()
    await _publish('conversation_participants', DELETE, old=old)
    logger.info({'msg': 'conversation_left', 'conversation_id': str(conversation_id), 'user_id': str(caller.user_id)})


# messages

async def list_messages(caller: Caller, conversation_id: UUID, limit: int = None) -> List[dict]:
    """Oldest first; callers outside the conversation get an empty list."""
    if limit is not None and limit < 1:
        raise ValidationFailed('limit must be positive')
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        q = (
            select(Message, Profile)
            .join(Profile, Profile.id == Message.sender_id)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc())
        )
        res = await session.execute(q)
        rows = [
            {**as_dict(m), 'sender': sender}
            for m, sender in res.all()
            if allows(ctx, 'messages', 'select', m)
        ]
        if limit:
            rows = rows[-limit:]
        return rows


def _clean_content(content: str) -> str:
    content = (content or '').strip()
    if not content:
        raise ValidationFailed('Message must not be empty')
    return content


async def send_message(caller: Caller, conversation_id: UUID, content: str) -> dict:
    content = _clean_content(content)
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        m = Message(conversation_id=conversation_id, sender_id=caller.user_id, content=content)
        enforce(ctx, 'messages', 'insert', m)
        session.add(m)
        await session.commit()
        sender = await session.get(Profile, caller.user_id)
    MESSAGES_SENT.inc()
    await _publish('messages', INSERT, new=as_dict(m))
    logger.info({'msg': 'message_sent', 'conversation_id': str(conversation_id), 'message_id': str(m.id)})
    return {**as_dict(m), 'sender': sender}


async def _visible_message(session, ctx: PolicyContext, message_id: UUID) -> Message:
    m = await session.get(Message, message_id)
    if m is None or not allows(ctx, 'messages', 'select', m):
        raise NotFound('Message not found')
    return m


async def edit_message(caller: Caller, message_id: UUID, content: str) -> dict:
    content = _clean_content(content)
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        m = await _visible_message(session, ctx, message_id)
        old = as_dict(m)
        enforce(ctx, 'messages', 'update', old, {**old, 'content': content})
        m.content = content
        m.updated_at = utcnow()
        await session.commit()
        sender = await session.get(Profile, m.sender_id)
    await _publish('messages', UPDATE, new=as_dict(m), old=old)
    return {**as_dict(m), 'sender': sender}


async def delete_message(caller: Caller, message_id: UUID):
    async with AsyncSessionLocal() as session:
        ctx = await load_policy_context(session, caller)
        m = await _visible_message(session, ctx, message_id)
        enforce(ctx, 'messages', 'delete', m)
        old = as_dict(m)
        await session.delete(m)
        await session.commit()
    await _publish('messages', DELETE, old=old)
