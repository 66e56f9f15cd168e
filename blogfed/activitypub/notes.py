"""
blogfed/activitypub/notes.py

Converte um post do blog no objeto Note federado, com `to`, `cc` e `tag`
(Hashtag e Mention) preenchidos.
"""

import logging
import re
from typing import Any

import markdown
from bs4 import BeautifulSoup
from sqlalchemy.exc import IntegrityError

from blogfed.activitypub import resolver
from blogfed.activitypub.activities import as_utc, iso8601
from blogfed.activitypub.actor import AS_PUBLIC, actor_iri, base_url, canonical_url, followers_iri
from blogfed.errors import FederationError

log = logging.getLogger(__name__)

MENTION_RE = re.compile(r"@([A-Za-z0-9._%+-]+)(@[A-Za-z0-9.-]+\.[A-Za-z]+)\b")
HASHTAG_RE = re.compile(r"(?<![\w/#&])#(\w+)")


def post_url(post, collection) -> str:
    if post.slug:
        return canonical_url(collection.alias) + post.slug
    return f"{base_url()}/{post.id}"


def render_html(source: str) -> str:
    return markdown.markdown(source, extensions=["fenced_code"])


def _plain_text(source: str) -> str:
    return BeautifulSoup(source, "html.parser").get_text(" ")


def extract_hashtags(source: str) -> list[str]:
    return list(dict.fromkeys(HASHTAG_RE.findall(_plain_text(source))))


def extract_mentions(source: str) -> list[str]:
    """Handles `@usuario@host.tld` citados no texto, sem repetição."""
    return list(dict.fromkeys(m.group(0) for m in MENTION_RE.finditer(_plain_text(source))))


async def build_note(
    post,
    collection,
    resolve: bool = True,
) -> dict[str, Any]:
    """
    Note do post. Com `resolve=False` as menções só são resolvidas pelo
    cache local (usado na outbox, que não deve sair para a rede).
    Não recebe sessão: o resolver abre as suas, fora de qualquer transação.
    """
    alias = collection.alias
    url = post_url(post, collection)
    html = render_html(post.content)

    note: dict[str, Any] = {
        "id": url,
        "type": "Note",
        "url": url,
        "published": iso8601(post.created),
        "attributedTo": actor_iri(alias),
        "content": html,
        "source": {"content": post.content, "mediaType": "text/markdown"},
        "to": [AS_PUBLIC],
        "cc": [followers_iri(alias)],
        "tag": [],
    }
    if post.title:
        note["name"] = post.title
    if post.updated is not None and as_utc(post.updated) > as_utc(post.created):
        note["updated"] = iso8601(post.updated)
    if post.language:
        note["contentMap"] = {post.language: html}

    canonical = canonical_url(alias)
    for tag in extract_hashtags(post.content):
        note["tag"].append({"type": "Hashtag", "href": f"{canonical}tag:{tag}", "name": f"#{tag}"})

    for handle in extract_mentions(post.content):
        try:
            href = await resolver.resolve_mention(handle, fetch=resolve)
        except (FederationError, IntegrityError) as e:
            log.info(f"Não foi possível resolver a menção {handle}: {e}")
            continue
        if href is None:
            continue
        if not resolver.is_silo_url(href):
            note["cc"].append(href)
        note["tag"].append({"type": "Mention", "href": href, "name": handle})

    return note
