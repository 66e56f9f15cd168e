import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from apkit.server.app import ActivityPubServer
from apkit.server.responses import ActivityResponse
from apkit.models import (
    Nodeinfo, NodeinfoSoftware,
    NodeinfoServices, NodeinfoUsage, NodeinfoUsageUsers,
)
from apkit.client import WebfingerResource, WebfingerResult, WebfingerLink

from blogfed import database
from blogfed.config import settings
from blogfed.errors import CollectionNotFound, FederationError, SignatureInvalid
from blogfed.activitypub.actor import AP_CONTENT_TYPE, actor_iri, base_url, canonical_url
from blogfed.activitypub.collections import load_collection, register_collection_routes
from blogfed.activitypub.handlers import register_handlers
from blogfed.models.blog import Collection

logging.basicConfig(level=settings.log_level)
log = logging.getLogger(__name__)

PROFILE_PAGE_REL = "http://webfinger.net/rel/profile-page"

HOST_META = """<?xml version="1.0" encoding="UTF-8"?>
<XRD xmlns="http://docs.oasis-open.org/ns/xri/xrd-1.0">
  <Link rel="lrdd" type="application/xrd+xml" template="{base}/.well-known/webfinger?resource={{uri}}"/>
</XRD>
"""


@asynccontextmanager
async def lifespan(app):
    import blogfed.database
    import blogfed.services.http
    import workers.inbox_worker
    await blogfed.database.init_db()
    worker_task = asyncio.create_task(workers.inbox_worker.run_worker())
    yield
    worker_task.cancel()
    await blogfed.services.http.close_client()


api = ActivityPubServer(lifespan=lifespan)


@api.exception_handler(FederationError)
async def federation_error_handler(request: Request, exc: FederationError):
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path}: {exc.message}")
    # 401 não revela o motivo da rejeição
    message = exc.default_message if isinstance(exc, SignatureInvalid) else exc.message
    return JSONResponse({"error": message}, status_code=exc.status_code)


register_handlers(api)


@api.get("/.well-known/host-meta")
async def host_meta():
    return Response(
        content=HOST_META.format(base=base_url()),
        media_type="application/xrd+xml; charset=utf-8",
    )


async def _webfinger_target(username: str) -> str | None:
    """Alias do actor para `username`, ou None quando não deve ser exposto."""
    if username == settings.domain:
        return username if settings.federation else None
    try:
        async with database.async_session_factory() as session:
            collection = await load_collection(session, username)
    except CollectionNotFound:
        return None
    if settings.single_user and username != collection.alias:
        return None
    return collection.alias


@api.webfinger()
async def webfinger(request: Request, acct: WebfingerResource) -> Response:
    if acct.host != settings.domain:
        return JSONResponse({"error": "Not found"}, status_code=404)

    alias = await _webfinger_target(acct.username)
    if alias is None:
        return JSONResponse({"error": "Not found"}, status_code=404)

    iri = actor_iri(alias)
    profile = f"{base_url()}/" if alias == settings.domain else canonical_url(alias)
    links = [
        WebfingerLink(rel=PROFILE_PAGE_REL, type="text/html", href=profile),
        WebfingerLink(rel="self", type=AP_CONTENT_TYPE, href=iri),
    ]
    jrd = WebfingerResult(subject=acct, links=links).to_json()
    jrd["aliases"] = [profile, iri]
    return JSONResponse(jrd, media_type="application/jrd+json")


@api.nodeinfo("/nodeinfo/2.1", "2.1")
async def nodeinfo():
    async with database.async_session_factory() as session:
        total = (await session.execute(select(func.count()).select_from(Collection))).scalar_one()

    return ActivityResponse(
        Nodeinfo(
            version="2.1",
            software=NodeinfoSoftware(name=settings.software_name, version=settings.software_version),
            protocols=["activitypub"],
            services=NodeinfoServices(inbound=[], outbound=["rss2.0"]),
            openRegistrations=settings.open_registration,
            usage=NodeinfoUsage(users=NodeinfoUsageUsers(total=total)),
            metadata={
                "nodeName": settings.site_name,
                "nodeDescription": settings.site_description,
                "private": settings.private,
            },
        )
    )


@api.get("/health")
async def health():
    return {"status": "ok"}


# Por último: inclui o catch-all GET /{alias}
register_collection_routes(api)
