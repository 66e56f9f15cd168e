"""
blogfed/activitypub/handlers.py

Registra o endpoint de inbox dos blogs no servidor apkit.

Handlers:
- Follow          → verifica a assinatura e enfileira para o worker
- Undo{Follow}    → verifica a assinatura e enfileira para o worker
- qualquer outro  → 200 sem efeito

O handler HTTP nunca escreve no banco nem envia o Accept: isso acontece no
worker, depois que o 200 já foi devolvido à instância remota.
"""

import json
import logging
from typing import Any

from fastapi import Request, Response

from blogfed import database
from blogfed.activitypub import resolver
from blogfed.activitypub.activities import activity_actor
from blogfed.activitypub.collections import is_instance_alias, load_collection
from blogfed.activitypub.remote_actor import PublicKey
from blogfed.activitypub.signatures import verify_request
from blogfed.errors import MalformedActivity, SignatureInvalid
from blogfed.services import queue as queue_module
from blogfed.services.queue import InboxJob

log = logging.getLogger(__name__)


def _object_type(value: Any) -> str | None:
    if isinstance(value, dict):
        return value.get("type")
    return None


def dispatch_kind(activity: dict[str, Any]) -> str | None:
    """Tipo a tratar: `Follow`, `Undo` (de um Follow) ou None para ignorar."""
    kind = activity.get("type")
    if kind == "Follow":
        return "Follow"
    if kind == "Undo" and _object_type(activity.get("object")) == "Follow":
        return "Undo"
    return None


def parse_activity(body: bytes) -> dict[str, Any]:
    try:
        activity = json.loads(body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedActivity("Activity is not valid JSON") from e
    if not isinstance(activity, dict):
        raise MalformedActivity("Activity must be a JSON object")
    return activity


def request_target(request: Request) -> str:
    """Caminho como veio na linha de requisição, ainda percent-encoded."""
    raw_path = request.scope.get("raw_path") or request.url.path.encode()
    return raw_path.decode("latin-1")


def register_handlers(app) -> None:
    """
    Registra o POST de inbox nos dois caminhos do blog.
    Chamado em main.py após criar a instância ActivityPubServer.
    """

    @app.post("/api/collections/{alias}/inbox")
    @app.post("/{alias}/inbox")
    async def post_inbox(alias: str, request: Request):
        if is_instance_alias(alias):
            # A instância só assina GETs; nada que chegue aqui é tratado
            return Response(status_code=200)

        async with database.async_session_factory() as session:
            collection = await load_collection(session, alias)

        body = await request.body()
        activity = parse_activity(body)
        kind = dispatch_kind(activity)
        log.info(f"{activity.get('type')} recebido em {collection.alias} de {activity.get('actor')}")

        if kind is None:
            return Response(status_code=200)

        actor_iri = activity_actor(activity)
        if actor_iri is None:
            raise MalformedActivity("Activity has no actor")

        fetched = {}

        async def fetch_key(key_id: str) -> PublicKey:
            key, actor = await resolver.resolve_public_key(key_id)
            fetched["actor"] = actor
            return key

        try:
            key = await verify_request(
                request.method,
                request_target(request),
                request.headers,
                body,
                fetch_key,
            )
        except SignatureInvalid as e:
            log.warning(f"{kind} de {actor_iri} rejeitado: {e}")
            raise

        if key.owner != actor_iri:
            log.warning(f"Chave {key.id} pertence a {key.owner}, não a {actor_iri}")
            raise SignatureInvalid("Signing key does not belong to the activity actor")

        actor = fetched.get("actor")
        await queue_module.activity_queue.put(
            InboxJob(
                kind=kind,
                collection_id=collection.id,
                alias=collection.alias,
                actor_iri=actor_iri,
                activity=activity,
                actor=actor if actor is not None and actor.id == actor_iri else None,
            )
        )
        return Response(status_code=200)
