"""
Fixtures compartilhadas entre todos os testes.
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


# ---------------------------------------------------------------------------
# Chaves RSA geradas em memória, uma para o actor remoto dos testes
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key():
    """Par de chaves RSA gerado uma única vez por sessão de testes."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def rsa_public_key_pem(rsa_private_key) -> str:
    return (
        rsa_private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode()
    )


# ---------------------------------------------------------------------------
# Configuração Dynaconf isolada para testes
# Usa monkeypatch para sobrescrever os atributos sem tocar em arquivos .toml
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def patch_settings(monkeypatch):
    """
    Sobrescreve as settings do Dynaconf com valores de teste.
    `autouse=True` garante que nenhum teste dependa do settings.toml local.
    """
    from blogfed import config

    monkeypatch.setattr(config.settings, "domain", "site.test")
    monkeypatch.setattr(config.settings, "site_name", "Site de Teste")
    monkeypatch.setattr(config.settings, "site_description", "Blogs de teste")
    monkeypatch.setattr(config.settings, "software_name", "blogfed")
    monkeypatch.setattr(config.settings, "software_version", "1.0.0")
    monkeypatch.setattr(config.settings, "single_user", False)
    monkeypatch.setattr(config.settings, "federation", True)
    monkeypatch.setattr(config.settings, "private", False)
    monkeypatch.setattr(config.settings, "open_registration", False)
    monkeypatch.setattr(config.settings, "posts_per_page", 10)
    monkeypatch.setattr(config.settings, "accept_delay", 0)
    monkeypatch.setattr(config.settings, "http_timeout", 15.0)
    monkeypatch.setattr(config.settings, "delivery_concurrency", 4)


# ---------------------------------------------------------------------------
# Banco SQLite isolado por teste, injetado em blogfed.database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db(tmp_path, monkeypatch):
    """
    Cria um banco SQLite em arquivo temporário e troca a engine e a
    fábrica de sessões do módulo `blogfed.database` por ele.
    """
    from blogfed import database

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(database, "async_session_factory", factory)

    await database.init_db()
    yield factory
    await engine.dispose()


@pytest.fixture
def make_blog(db):
    """Factory que cria usuário + coleção e devolve a coleção."""
    from blogfed.models.blog import Collection, User

    async def _make(
        alias: str = "alice",
        title: str = "Blog da Alice",
        visibility: str = "public",
        silenced: bool = False,
    ) -> Collection:
        async with db() as session:
            async with session.begin():
                user = User(username=f"{alias}-owner", silenced=silenced)
                session.add(user)
                await session.flush()
                collection = Collection(
                    alias=alias,
                    title=title,
                    description=f"Descrição de {alias}",
                    owner_id=user.id,
                    visibility=visibility,
                )
                session.add(collection)
        return collection

    return _make


@pytest.fixture
def make_post(db):
    """Factory que grava um post numa coleção e devolve o post."""
    from blogfed.models.blog import Post

    async def _make(collection, post_id: str = "post1", **fields) -> Post:
        fields.setdefault("slug", post_id)
        fields.setdefault("title", f"Título {post_id}")
        fields.setdefault("content", f"Conteúdo de {post_id}")
        async with db() as session:
            async with session.begin():
                post = Post(id=post_id, collection_id=collection.id, **fields)
                session.add(post)
        return post

    return _make


# ---------------------------------------------------------------------------
# HTTP de saída: transport fake que grava as requisições
# ---------------------------------------------------------------------------


class RemoteServer:
    """
    Instâncias remotas fake. Rotas são registradas por método + URL sem
    query string; POSTs não registrados respondem 202 e GETs 404.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], httpx.Response] = {}

    def add(self, method: str, url: str, json_body=None, status_code: int = 200) -> None:
        self.routes[(method, url)] = httpx.Response(
            status_code,
            json=json_body,
            headers={"Content-Type": "application/activity+json"},
        )

    def add_actor(self, actor: dict) -> None:
        self.add("GET", actor["id"], actor)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        response = self.routes.get((request.method, url))
        if response is not None:
            return httpx.Response(
                response.status_code,
                content=response.content,
                headers=response.headers,
            )
        if request.method == "POST":
            return httpx.Response(202)
        return httpx.Response(404)

    def sent(self, method: str = "POST") -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    def posted_json(self) -> list[tuple[str, dict]]:
        return [(str(r.url), json.loads(r.content)) for r in self.sent("POST")]


@pytest.fixture
def remote(monkeypatch):
    """Liga o cliente HTTP compartilhado a um RemoteServer."""
    from blogfed.services import http

    server = RemoteServer()
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    monkeypatch.setattr(http, "_client", client)
    return server


# ---------------------------------------------------------------------------
# Actors remotos
# ---------------------------------------------------------------------------


@pytest.fixture
def remote_actor_url() -> str:
    return "https://mastodon.example/users/bob"


@pytest.fixture
def make_actor_json(rsa_public_key_pem):
    """Factory que cria o JSON de um Person remoto no formato do Mastodon."""

    def _make(
        iri: str = "https://mastodon.example/users/bob",
        shared_inbox: str | None = None,
        url: str | None = None,
    ) -> dict:
        actor = {
            "@context": [
                "https://www.w3.org/ns/activitystreams",
                "https://w3id.org/security/v1",
            ],
            "id": iri,
            "type": "Person",
            "preferredUsername": iri.rstrip("/").split("/")[-1],
            "inbox": f"{iri}/inbox",
            "outbox": f"{iri}/outbox",
            "url": url or iri.replace("/users/", "/@"),
            "publicKey": {
                "id": f"{iri}#main-key",
                "owner": iri,
                "publicKeyPem": rsa_public_key_pem,
            },
        }
        if shared_inbox:
            actor["endpoints"] = {"sharedInbox": shared_inbox}
        return actor

    return _make


@pytest.fixture
def make_follow(remote_actor_url):
    """Factory que cria o JSON de um Follow recebido."""

    def _make(actor: str | None = None, target: str = "https://site.test/alice") -> dict:
        actor = actor or remote_actor_url
        return {
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": f"{actor}#follows/1",
            "type": "Follow",
            "actor": actor,
            "object": target,
        }

    return _make


# ---------------------------------------------------------------------------
# App ASGI e fila do inbox
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(db):
    """Cliente HTTP ligado ao app via ASGITransport (sem lifespan)."""
    from blogfed.main import api

    async with AsyncClient(transport=ASGITransport(app=api), base_url="https://site.test") as ac:
        yield ac


@pytest.fixture
def inbox_queue(monkeypatch):
    """Fila nova por teste, no lugar da fila global do inbox."""
    from blogfed.services import queue as queue_module

    fresh = asyncio.Queue()
    monkeypatch.setattr(queue_module, "activity_queue", fresh)
    return fresh
