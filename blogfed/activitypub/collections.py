"""
blogfed/activitypub/collections.py

Endpoints de leitura de cada blog: actor, outbox, followers e following.

Cada rota responde em dois caminhos: o IRI do actor
(`/api/collections/{alias}/...`) e o caminho curto (`/{alias}/...`).
O catch-all `/{alias}` precisa ser registrado por último em `main.py`.
"""

import logging
import math
from typing import Any

from apkit.server.responses import ActivityResponse
from fastapi import Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from blogfed import database
from blogfed.activitypub.activities import AS_NAMESPACE, outbox_create_activity, without_context
from blogfed.activitypub.actor import (
    AP_CONTENT_TYPE,
    build_actor,
    build_instance_actor,
    followers_iri,
    following_iri,
    outbox_iri,
)
from blogfed.activitypub.keys import get_public_key_pem
from blogfed.activitypub.notes import build_note
from blogfed.config import settings
from blogfed.errors import CollectionNotFound, NotAcceptable
from blogfed.models.blog import Collection, Post, User
from blogfed.models.keys import INSTANCE_COLLECTION_ID
from blogfed.services.followers import follower_count, list_followers

log = logging.getLogger(__name__)

CACHE_CONTROL = "public, max-age=60"
AP_ACCEPT_TYPES = ("application/activity+json", "application/ld+json")

# Id fixo do blog no modo de blog único
SINGLE_USER_COLLECTION_ID = 1


# ---------------------------------------------------------------------------
# Carregamento do blog
# ---------------------------------------------------------------------------

def is_instance_alias(alias: str) -> bool:
    return alias == settings.domain


async def load_collection(session: AsyncSession, alias: str) -> Collection:
    """
    Blog que responde por `alias`, aplicando as regras de exposição:
    federação desligada, instância privada, alias desconhecido, dono
    silenciado ou visibilidade privada/protegida → CollectionNotFound.

    No modo de blog único o alias é ignorado e o blog é sempre o de id 1.
    """
    if not settings.federation or settings.private:
        raise CollectionNotFound()

    if settings.single_user:
        collection = await session.get(Collection, SINGLE_USER_COLLECTION_ID)
    else:
        result = await session.execute(select(Collection).where(Collection.alias == alias))
        collection = result.scalar_one_or_none()

    if collection is None:
        raise CollectionNotFound(f"Collection {alias!r} not found")

    owner = await session.get(User, collection.owner_id)
    if owner is not None and owner.silenced:
        log.info(f"Coleção {collection.alias} pertence a usuário silenciado")
        raise CollectionNotFound(f"Collection {alias!r} not found")

    if not collection.is_federated:
        raise CollectionNotFound(f"Collection {alias!r} not found")
    return collection


def activity_json(content: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        content,
        media_type=AP_CONTENT_TYPE,
        headers={"Cache-Control": CACHE_CONTROL},
    )


def wants_activity_json(request: Request) -> bool:
    accept = request.headers.get("accept", "").lower()
    return any(media_type in accept for media_type in AP_ACCEPT_TYPES)


# ---------------------------------------------------------------------------
# Paginação
# ---------------------------------------------------------------------------

def last_page(total: int) -> int:
    return max(1, math.ceil(total / settings.posts_per_page))


def ordered_collection(collection_id: str, total: int) -> dict[str, Any]:
    return {
        "@context": AS_NAMESPACE,
        "id": collection_id,
        "type": "OrderedCollection",
        "totalItems": total,
        "first": f"{collection_id}?page=1",
        "last": f"{collection_id}?page={last_page(total)}",
    }


def ordered_collection_page(
    collection_id: str,
    page: int,
    total: int,
    items: list[Any],
) -> dict[str, Any]:
    content = {
        "@context": AS_NAMESPACE,
        "id": f"{collection_id}?page={page}",
        "type": "OrderedCollectionPage",
        "partOf": collection_id,
        "totalItems": total,
        "orderedItems": items,
    }
    if page < last_page(total):
        content["next"] = f"{collection_id}?page={page + 1}"
    if page > 1:
        content["prev"] = f"{collection_id}?page={page - 1}"
    return content


def _paged(collection_id: str, page: int | None, total: int, items: list[Any]) -> JSONResponse:
    if page is None:
        return activity_json(ordered_collection(collection_id, total))
    return activity_json(ordered_collection_page(collection_id, page, total, items))


# ---------------------------------------------------------------------------
# Consultas
# ---------------------------------------------------------------------------

def _outbox_filter(collection_id: int):
    # Posts fixados pertencem à página do blog, não à outbox
    return (Post.collection_id == collection_id, Post.pinned_position.is_(None))


async def count_public_posts(session: AsyncSession, collection_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(Post).where(*_outbox_filter(collection_id))
    )
    return result.scalar_one()


async def outbox_items(session: AsyncSession, collection: Collection, page: int) -> list[dict]:
    """Create{Note} dos posts da página, do mais recente para o mais antigo."""
    per_page = settings.posts_per_page
    result = await session.execute(
        select(Post)
        .where(*_outbox_filter(collection.id))
        .order_by(Post.created.desc(), Post.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    items = []
    for post in result.scalars().all():
        note = await build_note(post, collection, resolve=False)
        items.append(without_context(outbox_create_activity(note)))
    return items


# ---------------------------------------------------------------------------
# Rotas
# ---------------------------------------------------------------------------

def register_collection_routes(app) -> None:
    """
    Registra as rotas de leitura dos blogs no servidor apkit.
    Chamado em main.py depois de todas as outras rotas GET.
    """

    async def actor_response(alias: str):
        if is_instance_alias(alias):
            if not settings.federation:
                raise CollectionNotFound()
            public_pem = await get_public_key_pem(INSTANCE_COLLECTION_ID)
            response = ActivityResponse(build_instance_actor(public_pem))
        else:
            async with database.async_session_factory() as session:
                collection = await load_collection(session, alias)
            public_pem = await get_public_key_pem(collection.id)
            response = ActivityResponse(build_actor(collection, public_pem))

        response.headers["Cache-Control"] = CACHE_CONTROL
        return response

    @app.get("/api/collections/{alias}/outbox")
    @app.get("/{alias}/outbox")
    async def get_outbox(alias: str, page: int | None = Query(default=None, ge=1)):
        iri = outbox_iri(alias)
        if is_instance_alias(alias):
            return _paged(iri, page, 0, [])

        async with database.async_session_factory() as session:
            collection = await load_collection(session, alias)
            iri = outbox_iri(collection.alias)
            total = await count_public_posts(session, collection.id)
            items = [] if page is None else await outbox_items(session, collection, page)
        return _paged(iri, page, total, items)

    @app.get("/api/collections/{alias}/followers")
    @app.get("/{alias}/followers")
    async def get_followers(alias: str, page: int | None = Query(default=None, ge=1)):
        iri = followers_iri(alias)
        if is_instance_alias(alias):
            return _paged(iri, page, 0, [])

        async with database.async_session_factory() as session:
            collection = await load_collection(session, alias)
            iri = followers_iri(collection.alias)
            total = await follower_count(session, collection.id)
            items = []
            if page is not None:
                rows = await list_followers(
                    session, collection.id, page=page, per_page=settings.posts_per_page
                )
                items = [row.actor_id for row in rows]
        return _paged(iri, page, total, items)

    @app.get("/api/collections/{alias}/following")
    @app.get("/{alias}/following")
    async def get_following(alias: str, page: int | None = Query(default=None, ge=1)):
        if is_instance_alias(alias):
            return _paged(following_iri(alias), page, 0, [])

        async with database.async_session_factory() as session:
            collection = await load_collection(session, alias)
        return _paged(following_iri(collection.alias), page, 0, [])

    @app.get("/api/collections/{alias}")
    async def get_actor(alias: str):
        return await actor_response(alias)

    @app.get("/")
    async def get_root(request: Request):
        if not settings.single_user:
            raise CollectionNotFound()
        if not wants_activity_json(request):
            raise NotAcceptable()
        return await actor_response("")

    @app.get("/{alias}")
    async def get_actor_negotiated(alias: str, request: Request):
        if not wants_activity_json(request):
            raise NotAcceptable()
        return await actor_response(alias)
