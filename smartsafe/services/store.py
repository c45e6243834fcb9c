import datetime as dt
from typing import Any, Sequence

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from smartsafe.models.event import Event
from smartsafe.models.user import FaceTemplate, User

USER_FIELDS = {"name", "email", "password_hash", "is_admin", "pin_hash", "voice_phrase"}


def placeholder_user(user_id: str) -> User:
    return User(
        id=user_id,
        name=f"User {user_id}",
        email=f"{user_id}@safe.local",
        password_hash=None,
        is_admin=False,
    )


class SafeStore:
    """Whole-record reads and writes over users, events and face templates.

    Every call opens its own session, so callers always see the current rows.
    Concurrent writers are last-write-wins.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    # Users
    async def get_user(self, user_id: str) -> User | None:
        async with self._sessions() as session:
            return await session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._sessions() as session:
            stmt = select(User).where(User.email == email)
            return (await session.execute(stmt)).scalar_one_or_none()

    async def any_admin(self) -> bool:
        async with self._sessions() as session:
            stmt = select(User.id).where(User.is_admin.is_(True)).limit(1)
            return (await session.execute(stmt)).first() is not None

    async def list_users(self) -> Sequence[User]:
        async with self._sessions() as session:
            result = await session.execute(select(User).order_by(User.created_at))
            return result.scalars().all()

    async def create_user(
        self,
        name: str,
        email: str,
        password_hash: str | None,
        is_admin: bool = False,
        user_id: str | None = None,
    ) -> User:
        user = User(name=name, email=email, password_hash=password_hash, is_admin=is_admin)
        if user_id:
            user.id = user_id
        async with self._sessions() as session:
            session.add(user)
            await session.commit()
        return user

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> User | None:
        values = {k: v for k, v in changes.items() if k in USER_FIELDS}
        async with self._sessions() as session:
            if values:
                await session.execute(update(User).where(User.id == user_id).values(**values))
                await session.commit()
            return await session.get(User, user_id, populate_existing=True)

    async def delete_user(self, user_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(delete(User).where(User.id == user_id))
            if result.rowcount == 0:
                return False
            await session.execute(delete(FaceTemplate).where(FaceTemplate.user_id == user_id))
            await session.commit()
            return True

    # Events
    async def list_events(self, limit: int | None = None) -> Sequence[Event]:
        stmt = select(Event).order_by(Event.created_at.desc(), Event.id.desc())
        if limit:
            stmt = stmt.limit(limit)
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalars().all()

    async def append_event(
        self,
        type: str,
        user_id: str | None = None,
        user_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Event:
        event = Event(
            type=type,
            user_id=user_id,
            user_name=user_name,
            details=metadata,
            created_at=dt.datetime.now(dt.timezone.utc),
        )
        async with self._sessions() as session:
            session.add(event)
            await session.commit()
        return event

    # Face templates
    async def list_face_templates(self) -> Sequence[FaceTemplate]:
        async with self._sessions() as session:
            result = await session.execute(select(FaceTemplate).order_by(FaceTemplate.id))
            return result.scalars().all()

    async def upsert_face_template(self, user_id: str, embedding: Sequence[float]) -> FaceTemplate:
        async with self._sessions() as session:
            template = await self._put_template(session, user_id, embedding)
            await session.commit()
            return template

    async def delete_face_template(self, user_id: str) -> bool:
        async with self._sessions() as session:
            result = await session.execute(delete(FaceTemplate).where(FaceTemplate.user_id == user_id))
            await session.commit()
            return result.rowcount > 0

    async def upsert_credentials(
        self,
        user_id: str,
        *,
        pin_hash: str | None = None,
        voice_phrase: str | None = None,
        embedding: Sequence[float] | None = None,
    ) -> User:
        """Write any subset of the credential bundle, creating the user if needed."""
        async with self._sessions() as session:
            user = await session.get(User, user_id)
            if user is None:
                user = placeholder_user(user_id)
                session.add(user)
            if pin_hash is not None:
                user.pin_hash = pin_hash
            if voice_phrase is not None:
                user.voice_phrase = voice_phrase
            if embedding is not None:
                await self._put_template(session, user_id, embedding)
            await session.commit()
            return user

    async def _put_template(self, session: AsyncSession, user_id: str, embedding: Sequence[float]) -> FaceTemplate:
        stmt = select(FaceTemplate).where(FaceTemplate.user_id == user_id)
        template = (await session.execute(stmt)).scalar_one_or_none()
        if template is None:
            template = FaceTemplate(user_id=user_id, embedding=[float(v) for v in embedding])
            session.add(template)
        else:
            template.embedding = [float(v) for v in embedding]
            template.updated_at = dt.datetime.now(dt.timezone.utc)
        return template
