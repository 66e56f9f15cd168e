from apkit.models import CryptographicKey, Person

from blogfed.config import settings

AP_CONTENT_TYPE = "application/activity+json"
AS_PUBLIC = "https://www.w3.org/ns/activitystreams#Public"


def base_url() -> str:
    return f"https://{settings.domain}"


def actor_iri(alias: str) -> str:
    return f"{base_url()}/api/collections/{alias}"


def inbox_iri(alias: str) -> str:
    return f"{actor_iri(alias)}/inbox"


def outbox_iri(alias: str) -> str:
    return f"{actor_iri(alias)}/outbox"


def followers_iri(alias: str) -> str:
    return f"{actor_iri(alias)}/followers"


def following_iri(alias: str) -> str:
    return f"{actor_iri(alias)}/following"


def canonical_url(alias: str) -> str:
    """URL pública do blog; no modo de blog único é a raiz do host."""
    if settings.single_user:
        return f"{base_url()}/"
    return f"{base_url()}/{alias}/"


def _person(alias: str, name: str, summary: str, url: str, public_key_pem: str) -> Person:
    actor_url = actor_iri(alias)
    return Person(
        id=actor_url,
        name=name,
        preferredUsername=alias,
        summary=summary,
        url=url,
        inbox=inbox_iri(alias),
        outbox=outbox_iri(alias),
        followers=followers_iri(alias),
        following=following_iri(alias),
        publicKey=CryptographicKey(
            id=f"{actor_url}#main-key",
            owner=actor_url,
            publicKeyPem=public_key_pem,
        ),
        manuallyApprovesFollowers=False,
    )


def build_actor(collection, public_key_pem: str) -> Person:
    return _person(
        alias=collection.alias,
        name=collection.display_title,
        summary=collection.description or "",
        url=canonical_url(collection.alias),
        public_key_pem=public_key_pem,
    )


def build_instance_actor(public_key_pem: str) -> Person:
    """Actor da própria instância (alias = domínio), que assina os GETs."""
    return _person(
        alias=settings.domain,
        name=settings.site_name,
        summary=settings.site_description,
        url=f"{base_url()}/",
        public_key_pem=public_key_pem,
    )
