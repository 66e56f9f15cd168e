"""
Testes para blogfed/activitypub/handlers.py

Cobre:
- dispatch_kind(): Follow, Undo{Follow} e tipos ignorados
- POST /{alias}/inbox: Follow assinado → 200 e job enfileirado, com o actor
  já buscado durante a verificação
- Undo{Follow} assinado → job do tipo Undo
- Create/Like/Announce → 200 sem verificar assinatura nem enfileirar
- blog desconhecido ou dono silenciado → 404
- JSON inválido → 400
- assinatura ausente, corpo adulterado ou chave de outro actor → 401
- inbox no caminho /api/collections/{alias}/inbox
- assinatura sobre o caminho percent-encoded, como veio na requisição
- S1 ponta a ponta: inbox + worker → Accept assinado e aresta gravada
"""

import json

import httpx
import pytest

BOB = "https://mastodon.example/users/bob"


def _signed(activity: dict, private_pem: str, path: str = "/alice/inbox", key_id: str = f"{BOB}#main-key"):
    """Corpo e headers de um POST assinado como faria o Mastodon."""
    from blogfed.activitypub.signatures import sign_request

    body = json.dumps(activity).encode()
    request = httpx.Request(
        "POST",
        f"https://site.test{path}",
        content=body,
        headers={"Content-Type": "application/activity+json"},
    )
    sign_request(request, key_id, private_pem)
    headers = {k: v for k, v in request.headers.items() if k.lower() != "content-length"}
    return body, headers


@pytest.fixture
def bob_online(remote, make_actor_json):
    remote.add_actor(make_actor_json(BOB))
    return remote


# ---------------------------------------------------------------------------
# dispatch_kind
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "activity, expected",
    [
        ({"type": "Follow"}, "Follow"),
        ({"type": "Undo", "object": {"type": "Follow"}}, "Undo"),
        ({"type": "Undo", "object": {"type": "Like"}}, None),
        ({"type": "Undo", "object": "https://x/follows/1"}, None),
        ({"type": "Create", "object": {"type": "Note"}}, None),
        ({"type": "Announce"}, None),
        ({}, None),
    ],
)
def test_dispatch_kind(activity, expected):
    from blogfed.activitypub.handlers import dispatch_kind

    assert dispatch_kind(activity) == expected


# ---------------------------------------------------------------------------
# POST inbox
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_signed_follow_is_acknowledged_and_queued(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    blog = await make_blog()
    follow = make_follow()
    body, headers = _signed(follow, rsa_private_key_pem)

    response = await client.post("/alice/inbox", content=body, headers=headers)

    assert response.status_code == 200
    job = inbox_queue.get_nowait()
    assert job.kind == "Follow"
    assert job.collection_id == blog.id
    assert job.alias == "alice"
    assert job.actor_iri == BOB
    assert job.activity == follow
    assert job.actor.inbox == f"{BOB}/inbox"


@pytest.mark.asyncio
async def test_follow_on_api_collections_path(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    await make_blog()
    path = "/api/collections/alice/inbox"
    body, headers = _signed(make_follow(), rsa_private_key_pem, path=path)

    response = await client.post(path, content=body, headers=headers)

    assert response.status_code == 200
    assert inbox_queue.qsize() == 1


@pytest.mark.asyncio
async def test_follow_signed_over_percent_encoded_path(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    """O alias com acento chega percent-encoded; a assinatura cobre esse caminho."""
    await make_blog(alias="café")
    path = "/caf%C3%A9/inbox"
    body, headers = _signed(make_follow(), rsa_private_key_pem, path=path)

    response = await client.post(path, content=body, headers=headers)

    assert response.status_code == 200
    assert inbox_queue.get_nowait().alias == "café"


def test_request_target_keeps_raw_path():
    from starlette.requests import Request

    from blogfed.activitypub.handlers import request_target

    request = Request(
        {
            "type": "http",
            "method": "POST",
            "path": "/café/inbox",
            "raw_path": b"/caf%C3%A9/inbox",
            "query_string": b"",
            "headers": [],
        }
    )

    assert request_target(request) == "/caf%C3%A9/inbox"

@pytest.mark.asyncio
async def test_signed_undo_follow_is_queued(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    await make_blog()
    undo = {"id": f"{BOB}#undo/1", "type": "Undo", "actor": BOB, "object": make_follow()}
    body, headers = _signed(undo, rsa_private_key_pem)

    response = await client.post("/alice/inbox", content=body, headers=headers)

    assert response.status_code == 200
    assert inbox_queue.get_nowait().kind == "Undo"


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", ["Create", "Like", "Announce", "Delete"])
async def test_other_types_are_ignored_without_verification(client, make_blog, remote, inbox_queue, kind):
    await make_blog()
    activity = {"type": kind, "actor": BOB, "object": "https://mastodon.example/statuses/1"}

    response = await client.post("/alice/inbox", content=json.dumps(activity))

    assert response.status_code == 200
    assert inbox_queue.empty()
    assert remote.requests == []


@pytest.mark.asyncio
async def test_unknown_blog_returns_404(client, make_follow, inbox_queue, rsa_private_key_pem):
    body, headers = _signed(make_follow(), rsa_private_key_pem, path="/ghost/inbox")

    response = await client.post("/ghost/inbox", content=body, headers=headers)

    assert response.status_code == 404
    assert response.json() == {"error": "Collection 'ghost' not found"}
    assert inbox_queue.empty()


@pytest.mark.asyncio
async def test_silenced_owner_returns_404(client, make_blog, make_follow, inbox_queue, rsa_private_key_pem):
    await make_blog(silenced=True)
    body, headers = _signed(make_follow(), rsa_private_key_pem)

    response = await client.post("/alice/inbox", content=body, headers=headers)

    assert response.status_code == 404
    assert inbox_queue.empty()


@pytest.mark.asyncio
async def test_invalid_json_returns_400(client, make_blog, inbox_queue):
    await make_blog()

    response = await client.post("/alice/inbox", content=b"{not json")

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_unsigned_follow_returns_401(client, make_blog, make_follow, inbox_queue):
    await make_blog()

    response = await client.post("/alice/inbox", content=json.dumps(make_follow()))

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert inbox_queue.empty()


@pytest.mark.asyncio
async def test_tampered_body_returns_401(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    await make_blog()
    _, headers = _signed(make_follow(), rsa_private_key_pem)
    tampered = json.dumps(make_follow(target="https://site.test/carol")).encode()

    response = await client.post("/alice/inbox", content=tampered, headers=headers)

    assert response.status_code == 401
    assert inbox_queue.empty()


@pytest.mark.asyncio
async def test_key_of_other_actor_returns_401(
    client, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    """Assinado com a chave do Bob, mas o Follow diz ser da Mallory."""
    await make_blog()
    follow = make_follow(actor="https://evil.example/users/mallory")
    body, headers = _signed(follow, rsa_private_key_pem)

    response = await client.post("/alice/inbox", content=body, headers=headers)

    assert response.status_code == 401
    assert inbox_queue.empty()


@pytest.mark.asyncio
async def test_instance_inbox_accepts_and_ignores(client, inbox_queue):
    response = await client.post("/api/collections/site.test/inbox", content=b"{}")

    assert response.status_code == 200
    assert inbox_queue.empty()


# ---------------------------------------------------------------------------
# S1 ponta a ponta
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_follow_end_to_end(
    client, db, make_blog, make_follow, bob_online, inbox_queue, rsa_private_key_pem
):
    from sqlalchemy import select

    from blogfed.models.follower import RemoteFollow
    from blogfed.models.remote_user import RemoteUser
    from workers.inbox_worker import handle_job

    blog = await make_blog()
    follow = make_follow()
    body, headers = _signed(follow, rsa_private_key_pem)

    response = await client.post("/alice/inbox", content=body, headers=headers)
    assert response.status_code == 200

    await handle_job(inbox_queue.get_nowait())

    [(url, accept)] = bob_online.posted_json()
    assert url == f"{BOB}/inbox"
    assert accept["type"] == "Accept"
    assert accept["object"] == follow
    accept_request = bob_online.sent("POST")[0]
    assert 'keyId="https://site.test/api/collections/alice#main-key"' in accept_request.headers["Signature"]

    async with db() as session:
        user = (await session.execute(select(RemoteUser).where(RemoteUser.actor_id == BOB))).scalar_one()
        edge = await session.get(RemoteFollow, (blog.id, user.id))
    assert edge is not None
