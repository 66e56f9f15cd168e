"""
blogfed/activitypub/delivery.py

Entrega de Create/Update/Delete de posts aos seguidores remotos de um blog.

Fluxo de `federate()`:
1. Monta o Note e o envelope da atividade com IRI novo
2. Agrupa os seguidores por inbox compartilhada (ou pessoal)
3. Faz um POST assinado por inbox, com `cc` = actors daquele grupo
4. Reconstrói o Note e envia um Create direto à inbox de cada mencionado

Cada POST é independente: falhas são registradas no log e não interrompem
as demais entregas. Não há fila de retentativas.
"""

import asyncio
import copy
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

import httpx

from blogfed import database
from blogfed.activitypub import activities, resolver
from blogfed.activitypub.actor import AP_CONTENT_TYPE, canonical_url
from blogfed.activitypub.keys import SigningKey, signing_key_for
from blogfed.activitypub.notes import build_note
from blogfed.activitypub.signatures import sign_request
from blogfed.config import settings
from blogfed.errors import FederationError, PermanentRemote
from blogfed.models.blog import Collection, Post, User
from blogfed.services import http
from blogfed.services.followers import list_followers

log = logging.getLogger(__name__)

_BUILDERS = {
    "Create": activities.create_activity,
    "Update": activities.update_activity,
    "Delete": activities.delete_activity,
}


@dataclass
class PostEvent:
    # "Create" | "Update" | "Delete"
    kind: str
    post: Post
    collection_id: int


@dataclass
class DeliveryReport:
    attempted: int = 0
    failed: int = 0


async def post_activity(signing_key: SigningKey, inbox: str, activity: dict[str, Any]) -> None:
    """POST assinado de uma atividade para `inbox`."""
    body = json.dumps(activity).encode()
    try:
        request = httpx.Request(
            "POST",
            inbox,
            content=body,
            headers={"Content-Type": AP_CONTENT_TYPE, "Accept": AP_CONTENT_TYPE},
        )
    except httpx.InvalidURL as e:
        raise PermanentRemote(f"Invalid inbox {inbox!r}") from e

    sign_request(request, signing_key.key_id, signing_key.private_key_pem)
    await http.send(request)
    log.info(f"{activity.get('type')} {activity.get('id')} entregue em {inbox}")


async def _load_federating_collection(collection_id: int) -> Collection | None:
    async with database.async_session_factory() as session:
        collection = await session.get(Collection, collection_id)
        if collection is None:
            log.info(f"Coleção {collection_id} não existe; nada a federar")
            return None
        owner = await session.get(User, collection.owner_id)

    if owner is not None and owner.silenced:
        log.info(f"Dono da coleção {collection.alias} está silenciado; nada a federar")
        return None
    if not collection.is_federated:
        log.info(f"Coleção {collection.alias} é {collection.visibility}; nada a federar")
        return None
    return collection


async def federate(event: PostEvent) -> DeliveryReport:
    """
    Federa o evento de post para os seguidores e os mencionados.

    É um no-op bem-sucedido quando a instância é privada, a federação está
    desligada, ou o blog não existe ou não é público/não listado.
    """
    report = DeliveryReport()
    if settings.private or not settings.federation:
        return report

    builder = _BUILDERS.get(event.kind)
    if builder is None:
        raise ValueError(f"Unsupported post event {event.kind!r}")

    collection = await _load_federating_collection(event.collection_id)
    if collection is None:
        return report

    canonical = canonical_url(collection.alias)
    # Resolução de menções vai à rede: fica fora da sessão
    note = await build_note(event.post, collection, resolve=event.kind != "Delete")
    async with database.async_session_factory() as session:
        followers = await list_followers(session, collection.id)

    activity = builder(note, canonical)

    buckets: dict[str, list[str]] = defaultdict(list)
    for follower in followers:
        buckets[follower.delivery_inbox].append(follower.actor_id)

    signing_key = await signing_key_for(collection.alias, collection.id)
    semaphore = asyncio.Semaphore(settings.delivery_concurrency)

    async def deliver(inbox: str, payload: dict[str, Any]) -> bool:
        async with semaphore:
            try:
                await post_activity(signing_key, inbox, payload)
            except FederationError as e:
                log.warning(f"Falha ao entregar {payload['type']} em {inbox}: {e}")
                return False
            return True

    jobs = []
    for inbox, actors in buckets.items():
        payload = copy.deepcopy(activity)
        payload["cc"] = list(actors)
        if isinstance(payload["object"], dict) and "cc" in payload["object"]:
            payload["object"]["cc"] = list(actors)
        jobs.append(deliver(inbox, payload))

    results = await asyncio.gather(*jobs)
    report.attempted += len(results)
    report.failed += results.count(False)

    # Um Delete não reenvia Create aos mencionados
    if event.kind != "Delete":
        mention_jobs = await _mention_deliveries(event, collection, canonical, deliver)
        results = await asyncio.gather(*mention_jobs)
        report.attempted += len(results)
        report.failed += results.count(False)

    log.info(
        f"{event.kind} do post {event.post.id} federado: "
        f"{report.attempted} envios, {report.failed} falhas"
    )
    return report


async def _mention_deliveries(event: PostEvent, collection: Collection, canonical: str, deliver) -> list:
    """Um Create do Note novo para a inbox pessoal de cada actor mencionado."""
    jobs = []
    note = await build_note(event.post, collection)
    for tag in note["tag"]:
        if tag["type"] != "Mention" or resolver.is_silo_url(tag["href"]):
            continue
        try:
            actor = await resolver.resolve_iri(tag["href"])
        except FederationError as e:
            log.warning(f"Não foi possível resolver {tag['href']} para entrega: {e}")
            continue
        jobs.append(deliver(actor.inbox, activities.create_activity(note, canonical)))
    return jobs
