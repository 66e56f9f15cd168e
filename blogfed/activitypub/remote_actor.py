"""
blogfed/activitypub/remote_actor.py

Leitura tolerante de actors remotos.

Cada implementação do Fediverso serializa o Person de um jeito: `@context`
pode vir como string, lista ou objeto; `url` como string, objeto com `href`
ou lista. A normalização acontece aqui, na borda, para que o restante do
código veja sempre um único formato.
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from blogfed.errors import MalformedActor

AS_NAMESPACE = "https://www.w3.org/ns/activitystreams"


class PublicKey(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    owner: str = ""
    public_key_pem: str = Field(alias="publicKeyPem")


class Endpoints(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    shared_inbox: str | None = Field(default=None, alias="sharedInbox")


class RemoteActor(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    context: list[Any] = Field(default_factory=lambda: [AS_NAMESPACE], alias="@context")
    id: str
    type: str = "Person"
    inbox: str
    outbox: str | None = None
    followers: str | None = None
    following: str | None = None
    preferred_username: str | None = Field(default=None, alias="preferredUsername")
    name: str | None = None
    summary: str | None = None
    url: str | None = None
    endpoints: Endpoints | None = None
    public_key: PublicKey | None = Field(default=None, alias="publicKey")

    @field_validator("context", mode="before")
    @classmethod
    def _context_as_list(cls, value):
        if value is None:
            return [AS_NAMESPACE]
        if isinstance(value, list):
            return value
        return [value]

    @field_validator("url", mode="before")
    @classmethod
    def _url_as_string(cls, value):
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, dict):
            return value.get("href")
        return value

    @field_validator("endpoints", mode="before")
    @classmethod
    def _endpoints_object(cls, value):
        # Algumas implementações publicam `endpoints` como IRI
        return value if isinstance(value, (dict, Endpoints)) else None

    @property
    def shared_inbox(self) -> str | None:
        return self.endpoints.shared_inbox if self.endpoints else None

    @property
    def profile_url(self) -> str:
        return self.url or self.id

    @classmethod
    def from_remote_user(cls, remote_user) -> "RemoteActor":
        """Sintetiza um Person a partir dos campos em cache de um RemoteUser."""
        return cls(
            id=remote_user.actor_id,
            inbox=remote_user.inbox,
            url=remote_user.url,
            endpoints=Endpoints(shared_inbox=remote_user.shared_inbox),
        )


def parse_actor(raw: bytes | str | dict) -> RemoteActor:
    """
    Converte o payload de um actor remoto em `RemoteActor`.

    Levanta MalformedActor se o JSON for inválido ou se faltar `id`,
    `inbox` ou `publicKey.publicKeyPem`.
    """
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedActor(f"Actor is not valid JSON: {e}") from e

    if not isinstance(raw, dict):
        raise MalformedActor("Actor payload is not a JSON object")

    try:
        actor = RemoteActor.model_validate(raw)
    except ValidationError as e:
        raise MalformedActor(f"Actor could not be normalized: {e}") from e

    if actor.public_key is None or not actor.public_key.public_key_pem:
        raise MalformedActor(f"Actor {actor.id} has no publicKey")
    return actor
