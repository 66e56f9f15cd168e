"""
blogfed/services/followers.py

Conjunto durável de seguidores remotos por blog.

Adições e remoções são idempotentes; a restrição única do par
(collection_id, remote_user_id) é a única guarda contra corridas entre
Follows concorrentes do mesmo actor.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogfed import database
from blogfed.activitypub.remote_actor import RemoteActor
from blogfed.models.follower import RemoteFollow
from blogfed.models.remote_user import RemoteUser, RemoteUserKey

log = logging.getLogger(__name__)


@dataclass
class FollowerRow:
    actor_id: str
    inbox: str
    shared_inbox: str | None
    url: str | None
    handle: str | None
    followed_at: datetime

    @property
    def delivery_inbox(self) -> str:
        return self.shared_inbox or self.inbox


async def add_follower(session: AsyncSession, collection_id: int, remote_user_id: int) -> bool:
    """Insere a aresta de Follow; retorna False se ela já existia."""
    existing = await session.get(RemoteFollow, (collection_id, remote_user_id))
    if existing is not None:
        return False
    session.add(RemoteFollow(collection_id=collection_id, remote_user_id=remote_user_id))
    await session.flush()
    return True


async def remove_follower(session: AsyncSession, collection_id: int, actor_iri: str) -> bool:
    """Remove a aresta (blog, actor); retorna se alguma linha foi apagada."""
    remote_user_id = select(RemoteUser.id).where(RemoteUser.actor_id == actor_iri).scalar_subquery()
    result = await session.execute(
        delete(RemoteFollow).where(
            RemoteFollow.collection_id == collection_id,
            RemoteFollow.remote_user_id == remote_user_id,
        )
    )
    return result.rowcount > 0


async def list_followers(
    session: AsyncSession,
    collection_id: int,
    page: int | None = None,
    per_page: int = 10,
) -> list[FollowerRow]:
    """Seguidores do blog, do mais antigo para o mais recente."""
    stmt = (
        select(RemoteUser, RemoteFollow.created)
        .join(RemoteFollow, RemoteFollow.remote_user_id == RemoteUser.id)
        .where(RemoteFollow.collection_id == collection_id)
        .order_by(RemoteFollow.created, RemoteUser.id)
    )
    if page is not None:
        stmt = stmt.offset((page - 1) * per_page).limit(per_page)

    rows = await session.execute(stmt)
    return [
        FollowerRow(
            actor_id=user.actor_id,
            inbox=user.inbox,
            shared_inbox=user.shared_inbox,
            url=user.url,
            handle=user.handle,
            followed_at=created,
        )
        for user, created in rows.all()
    ]


async def follower_count(session: AsyncSession, collection_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(RemoteFollow).where(RemoteFollow.collection_id == collection_id)
    )
    return result.scalar_one()


async def cache_public_key(
    session: AsyncSession,
    key_id: str,
    remote_user_id: int,
    public_key_pem: str,
) -> None:
    """Cache de chave pública de escrita única: gravações repetidas são ignoradas."""
    if await session.get(RemoteUserKey, key_id) is not None:
        return
    session.add(RemoteUserKey(id=key_id, remote_user_id=remote_user_id, public_key=public_key_pem))
    await session.flush()


async def _store_follow(session: AsyncSession, collection_id: int, actor: RemoteActor) -> bool:
    remote_user = (
        await session.execute(select(RemoteUser).where(RemoteUser.actor_id == actor.id))
    ).scalar_one_or_none()

    if remote_user is None:
        remote_user = RemoteUser(
            actor_id=actor.id,
            inbox=actor.inbox,
            shared_inbox=actor.shared_inbox,
            url=actor.url,
        )
        session.add(remote_user)
        await session.flush()

    if actor.public_key is not None:
        await cache_public_key(
            session,
            actor.public_key.id,
            remote_user.id,
            actor.public_key.public_key_pem,
        )

    return await add_follower(session, collection_id, remote_user.id)


async def persist_follower(collection_id: int, actor: RemoteActor) -> bool:
    """
    Grava, numa única transação, o actor remoto (se novo), sua chave e a
    aresta de Follow.

    Se um Follow concorrente do mesmo actor ganhar a corrida, a transação
    é desfeita e refeita uma vez: na segunda tentativa as linhas já existem
    e o INSERT vira um no-op.
    """
    for attempt in (1, 2):
        try:
            async with database.transaction() as session:
                return await _store_follow(session, collection_id, actor)
        except IntegrityError:
            if attempt == 2:
                raise
            log.info(f"Follow concorrente de {actor.id}; refazendo a transação")
