"""
blogfed/services/queue.py

Fila em memória entre o endpoint de inbox e o worker.

O handler HTTP só decide o que fazer e enfileira um `InboxJob`; escrita no
banco e envio do Accept acontecem no worker, depois do 200 já ter sido
devolvido à instância remota.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from blogfed.activitypub.remote_actor import RemoteActor


@dataclass
class InboxJob:
    # "Follow" ou "Undo"
    kind: str
    collection_id: int
    alias: str
    actor_iri: str
    activity: dict[str, Any]

    # Actor já buscado durante a verificação da assinatura, se houver
    actor: RemoteActor | None = field(default=None)


activity_queue: asyncio.Queue[InboxJob] = asyncio.Queue()
