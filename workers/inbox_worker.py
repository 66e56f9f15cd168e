"""
workers/inbox_worker.py

Worker assíncrono que processa os Follow e Undo{Follow} aceitos pelo inbox.

Fluxo de cada job (uma task própria por job):
1. Resolve o actor remoto (reaproveitando o que foi buscado na verificação)
2. Follow → grava usuário remoto, chave e aresta numa transação
   Undo   → remove a aresta (o usuário remoto continua no cache)
3. Aguarda `accept_delay` segundos
4. Envia o Accept assinado pelo blog para a inbox do actor
"""

import asyncio
import logging

from blogfed import database
from blogfed.activitypub import delivery, resolver
from blogfed.activitypub.activities import accept_activity
from blogfed.activitypub.actor import actor_iri
from blogfed.activitypub.keys import signing_key_for
from blogfed.activitypub.remote_actor import RemoteActor
from blogfed.config import settings
from blogfed.services import followers
from blogfed.services.queue import InboxJob, activity_queue

log = logging.getLogger(__name__)

# Referências fortes às tasks em andamento; o event loop só guarda fracas
_running: set[asyncio.Task] = set()


async def resolve_follower(job: InboxJob) -> RemoteActor:
    if job.actor is not None:
        return job.actor
    return await resolver.resolve_iri(job.actor_iri)


async def send_accept(job: InboxJob, inbox: str) -> None:
    await asyncio.sleep(settings.accept_delay)
    accept = accept_activity(actor_iri(job.alias), job.activity)
    key = await signing_key_for(job.alias, job.collection_id)
    await delivery.post_activity(key, inbox, accept)


async def handle_follow(job: InboxJob) -> None:
    actor = await resolve_follower(job)
    created = await followers.persist_follower(job.collection_id, actor)
    if created:
        log.info(f"{actor.id} agora segue {job.alias}")
    else:
        log.info(f"{actor.id} já seguia {job.alias}; reenviando Accept")
    await send_accept(job, actor.inbox)


async def handle_undo(job: InboxJob) -> None:
    async with database.transaction() as session:
        removed = await followers.remove_follower(session, job.collection_id, job.actor_iri)
    actor = await resolver.resolve_iri(job.actor_iri)

    if removed:
        log.info(f"{job.actor_iri} deixou de seguir {job.alias}")
    else:
        log.info(f"Undo de {job.actor_iri} sem Follow correspondente em {job.alias}")
    await send_accept(job, actor.inbox)


_HANDLERS = {
    "Follow": handle_follow,
    "Undo": handle_undo,
}


async def handle_job(job: InboxJob) -> None:
    handler = _HANDLERS.get(job.kind)
    if handler is None:
        log.warning(f"Job de tipo desconhecido ignorado: {job.kind}")
        return
    try:
        await handler(job)
    except Exception as e:
        log.error(f"Erro ao processar {job.kind} de {job.actor_iri}: {e}", exc_info=True)


def spawn(job: InboxJob) -> asyncio.Task:
    task = asyncio.create_task(handle_job(job))
    _running.add(task)
    task.add_done_callback(_running.discard)
    return task


async def run_worker() -> None:
    log.info("Worker de inbox iniciado")
    while True:
        try:
            job = await asyncio.wait_for(activity_queue.get(), timeout=5.0)
        except asyncio.TimeoutError:
            continue
        spawn(job)
        activity_queue.task_done()
