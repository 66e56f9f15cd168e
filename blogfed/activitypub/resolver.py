"""
blogfed/activitypub/resolver.py

Resolução de actors remotos.

- `resolve_iri()`: IRI → Person, primeiro pelo cache local, depois por GET
                       assinado pelo actor da instância
- `resolve_handle()`: `@usuario@host` → URL do perfil, via WebFinger, com
                       preenchimento do handle no cache
- `resolve_public_key()`: keyId → chave pública, usada pelo verificador

Falhas de rede viram TransientRemote, 404/410 viram RemoteNotFound, demais
4xx viram PermanentRemote e JSON inválido vira MalformedActor.
"""

import logging
from urllib.parse import urldefrag, urlparse

import httpx
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from blogfed import database
from blogfed.activitypub.actor import AP_CONTENT_TYPE
from blogfed.activitypub.keys import instance_signing_key
from blogfed.activitypub.remote_actor import PublicKey, RemoteActor, parse_actor
from blogfed.activitypub.signatures import sign_request
from blogfed.errors import MalformedActor, PermanentRemote
from blogfed.models.remote_user import RemoteUser, RemoteUserKey
from blogfed.services import http
from blogfed.services.followers import cache_public_key

log = logging.getLogger(__name__)

# Sites fora do ActivityPub que aceitamos em menções @usuario@host, com o
# prefixo inserido entre `https://host/` e o usuário
SILO_HOSTS = {
    "twitter.com": "",
    "medium.com": "@",
}


def normalize_handle(handle: str) -> tuple[str, str]:
    """`@Fulano@Mastodon.Social` → ("Fulano", "mastodon.social")."""
    user, sep, host = handle.strip().lstrip("@").partition("@")
    if not sep or not user or not host or "@" in host:
        raise MalformedActor(f"Invalid handle {handle!r}")
    return user, host.lower()


def format_handle(user: str, host: str) -> str:
    return f"@{user}@{host}"


def is_silo_url(url: str) -> bool:
    return (urlparse(url).hostname or "") in SILO_HOSTS


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

async def get_remote_user(session: AsyncSession, actor_id: str) -> RemoteUser | None:
    result = await session.execute(select(RemoteUser).where(RemoteUser.actor_id == actor_id))
    return result.scalar_one_or_none()


async def get_remote_user_by_handle(session: AsyncSession, handle: str) -> RemoteUser | None:
    result = await session.execute(select(RemoteUser).where(RemoteUser.handle == handle))
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Rede
# ---------------------------------------------------------------------------

async def fetch_actor(iri: str) -> RemoteActor:
    """GET assinado do actor remoto, sem consultar o cache."""
    log.info(f"Buscando actor {iri} remotamente")
    try:
        request = httpx.Request("GET", iri, headers={"Accept": AP_CONTENT_TYPE})
    except httpx.InvalidURL as e:
        raise PermanentRemote(f"Invalid actor IRI {iri!r}") from e

    key = await instance_signing_key()
    sign_request(request, key.key_id, key.private_key_pem)
    response = await http.send(request)
    return parse_actor(response.content)


async def webfinger_actor_iri(user: str, host: str) -> str:
    """Consulta o WebFinger de `host` e devolve o IRI do actor."""
    request = httpx.Request(
        "GET",
        f"https://{host}/.well-known/webfinger",
        params={"resource": f"acct:{user}@{host}"},
        headers={"Accept": "application/jrd+json, application/json"},
    )
    response = await http.send(request)
    try:
        jrd = response.json()
    except ValueError as e:
        raise MalformedActor(f"WebFinger for {user}@{host} is not valid JSON") from e

    for link in jrd.get("links") or []:
        if link.get("rel") == "self" and link.get("href"):
            return link["href"]

    aliases = jrd.get("aliases") or []
    if aliases:
        return aliases[-1]
    raise MalformedActor(f"WebFinger for {user}@{host} has no actor link")


# ---------------------------------------------------------------------------
# Pontos de entrada
#
# Cada um abre suas próprias sessões curtas: a leitura do cache e a escrita
# acontecem em sessões separadas e nenhuma fica aberta durante a rede.
# ---------------------------------------------------------------------------

async def resolve_iri(iri: str) -> RemoteActor:
    """
    Retorna o Person do IRI. Em cache, sintetiza o Person a partir dos campos
    gravados; fora dele, busca remotamente. Quem chama decide se persiste.
    """
    async with database.async_session_factory() as session:
        remote_user = await get_remote_user(session, iri)
        if remote_user is not None:
            return RemoteActor.from_remote_user(remote_user)
    return await fetch_actor(iri)


async def resolve_public_key(key_id: str) -> tuple[PublicKey, RemoteActor | None]:
    """
    Chave pública de `key_id`. Devolve também o actor quando ele precisou
    ser buscado, para que o chamador não o busque de novo.
    """
    async with database.async_session_factory() as session:
        result = await session.execute(
            select(RemoteUserKey.public_key, RemoteUser.actor_id)
            .join(RemoteUser, RemoteUser.id == RemoteUserKey.remote_user_id)
            .where(RemoteUserKey.id == key_id)
        )
        row = result.first()
    if row is not None:
        pem, owner = row
        return PublicKey(id=key_id, owner=owner, publicKeyPem=pem), None

    actor = await fetch_actor(urldefrag(key_id).url)
    if actor.public_key.id != key_id:
        raise MalformedActor(f"Actor {actor.id} does not publish key {key_id}")
    key = actor.public_key
    if not key.owner:
        key = key.model_copy(update={"owner": actor.id})
    return key, actor


async def _set_handle(session: AsyncSession, remote_user: RemoteUser, handle: str) -> None:
    if remote_user.handle == handle:
        return
    # O handle passa a apontar só para este actor
    await session.execute(
        update(RemoteUser)
        .where(RemoteUser.handle == handle, RemoteUser.id != remote_user.id)
        .values(handle=None)
    )
    remote_user.handle = handle
    await session.flush()


async def _store_remote_user(session: AsyncSession, actor: RemoteActor, handle: str) -> RemoteUser:
    # Indexado por actor.id: o IRI vindo do WebFinger pode ser um alias
    remote_user = await get_remote_user(session, actor.id)
    if remote_user is not None:
        await _set_handle(session, remote_user, handle)
        return remote_user

    remote_user = RemoteUser(
        actor_id=actor.id,
        inbox=actor.inbox,
        shared_inbox=actor.shared_inbox,
        url=actor.url,
    )
    session.add(remote_user)
    await session.flush()
    await _set_handle(session, remote_user, handle)
    await cache_public_key(session, actor.public_key.id, remote_user.id, actor.public_key.public_key_pem)
    return remote_user


async def remember_actor(actor_iri: str, handle: str) -> RemoteUser:
    """
    Associa `handle` ao actor. Se a linha do actor já existe, apenas grava o
    handle; senão busca o actor e insere a linha e a chave.

    Se outra tarefa inserir o mesmo actor entre a leitura e o INSERT, a
    transação é refeita uma vez e encontra a linha já gravada.
    """
    async with database.transaction() as session:
        remote_user = await get_remote_user(session, actor_iri)
        if remote_user is not None:
            await _set_handle(session, remote_user, handle)
            return remote_user

    actor = await fetch_actor(actor_iri)

    for attempt in (1, 2):
        try:
            async with database.transaction() as session:
                return await _store_remote_user(session, actor, handle)
        except IntegrityError:
            if attempt == 2:
                raise
            log.info(f"{actor.id} gravado concorrentemente; refazendo a transação")


async def _cached_by_handle(handle: str) -> RemoteUser | None:
    async with database.async_session_factory() as session:
        return await get_remote_user_by_handle(session, handle)


async def resolve_handle(handle: str) -> str:
    """`@usuario@host` → URL do perfil do usuário remoto."""
    user, host = normalize_handle(handle)
    if host in SILO_HOSTS:
        return f"https://{host}/{SILO_HOSTS[host]}{user}"

    handle = format_handle(user, host)
    remote_user = await _cached_by_handle(handle)
    if remote_user is not None and remote_user.url:
        return remote_user.url

    actor_iri = await webfinger_actor_iri(user, host)
    remote_user = await remember_actor(actor_iri, handle)
    return remote_user.url or remote_user.actor_id


async def resolve_mention(handle: str, fetch: bool = True) -> str | None:
    """
    `href` da tag Mention para `handle`: o IRI do actor, ou a URL do perfil
    no caso de silos. Com `fetch=False` só o cache é consultado.
    """
    user, host = normalize_handle(handle)
    if host in SILO_HOSTS:
        return f"https://{host}/{SILO_HOSTS[host]}{user}"

    handle = format_handle(user, host)
    remote_user = await _cached_by_handle(handle)
    if remote_user is not None:
        return remote_user.actor_id
    if not fetch:
        return None

    actor_iri = await webfinger_actor_iri(user, host)
    remote_user = await remember_actor(actor_iri, handle)
    return remote_user.actor_id
