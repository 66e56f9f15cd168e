"""
blogfed/activitypub/activities.py

Construção dos envelopes de atividade emitidos pelo núcleo:
Create, Update, Delete (posts) e Accept (respostas a Follow/Undo).

Cada envelope enviado recebe um IRI novo e aleatório; nada aqui é
persistido. O Create listado na outbox usa um IRI derivado do post, para
que leituras repetidas da outbox mostrem a mesma atividade.
"""

import secrets
import string
from datetime import datetime, timezone
from typing import Any

AS_NAMESPACE = "https://www.w3.org/ns/activitystreams"

_ALPHABET = string.ascii_letters + string.digits


def random_suffix(length: int = 20) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def as_utc(moment: datetime) -> datetime:
    # SQLite devolve datetimes sem tzinfo; tudo é gravado em UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def iso8601(moment: datetime) -> str:
    return as_utc(moment).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_activity_id(canonical: str, kind: str) -> str:
    """`{canonical}#{kind}-{aleatório}`, ex: `https://host/alice/#Create-aB3…`."""
    return f"{canonical}#{kind}-{random_suffix()}"


def _wrap(kind: str, activity_id: str, note: dict[str, Any], published: str) -> dict[str, Any]:
    return {
        "@context": AS_NAMESPACE,
        "id": activity_id,
        "type": kind,
        "actor": note["attributedTo"],
        "published": published,
        "to": list(note["to"]),
        "cc": list(note["cc"]),
        "object": note,
    }


def create_activity(note: dict[str, Any], canonical: str) -> dict[str, Any]:
    return _wrap("Create", new_activity_id(canonical, "Create"), note, note["published"])


def outbox_create_activity(note: dict[str, Any]) -> dict[str, Any]:
    """Create estável do post: `{url do post}#Create`."""
    return _wrap("Create", f"{note['id']}#Create", note, note["published"])


def update_activity(note: dict[str, Any], canonical: str) -> dict[str, Any]:
    published = note.get("updated") or iso8601(datetime.now(timezone.utc))
    return _wrap("Update", new_activity_id(canonical, "Update"), note, published)


def delete_activity(note: dict[str, Any], canonical: str) -> dict[str, Any]:
    """
    Delete com o objeto reduzido a um Tombstone. O IRI termina em `#Delete`
    para não colidir com caches remotos que deduplicam por prefixo de IRI.
    """
    activity = _wrap(
        "Delete",
        new_activity_id(canonical, "Delete") + "#Delete",
        note,
        iso8601(datetime.now(timezone.utc)),
    )
    activity["object"] = {
        "id": note["id"],
        "type": "Tombstone",
        "formerType": note["type"],
    }
    return activity


def accept_activity(actor_iri: str, activity: dict[str, Any]) -> dict[str, Any]:
    """Accept do Follow (ou Undo) recebido, embutindo a atividade original."""
    return {
        "@context": AS_NAMESPACE,
        "id": f"{actor_iri}#accept-{random_suffix()}",
        "type": "Accept",
        "actor": actor_iri,
        "to": [activity_actor(activity)],
        "object": activity,
    }


def activity_actor(activity: dict[str, Any]) -> str | None:
    """IRI do actor de uma atividade, aceitando `actor` como string ou objeto."""
    actor = activity.get("actor")
    if isinstance(actor, dict):
        actor = actor.get("id")
    if isinstance(actor, list):
        actor = actor[0] if actor else None
        if isinstance(actor, dict):
            actor = actor.get("id")
    return actor if isinstance(actor, str) and actor else None


def without_context(activity: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in activity.items() if k != "@context"}
