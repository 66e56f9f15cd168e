"""
blogfed/services/http.py

Cliente HTTP compartilhado para todas as chamadas de saída (GETs de actor,
WebFinger e POSTs de atividades), com timeout total configurável.

Também concentra a classificação das respostas remotas em erros do núcleo.
"""

import logging

import httpx

from blogfed.config import settings
from blogfed.errors import PermanentRemote, RemoteNotFound, TransientRemote

log = logging.getLogger(__name__)

_client: httpx.AsyncClient | None = None


def user_agent() -> str:
    return f"{settings.software_name}/{settings.software_version} ({settings.domain})"


def get_client() -> httpx.AsyncClient:
    """Retorna o cliente compartilhado, criando-o na primeira chamada."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.http_timeout),
            headers={"User-Agent": user_agent()},
            follow_redirects=True,
        )
    return _client


async def close_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


async def send(request: httpx.Request) -> httpx.Response:
    """
    Envia a requisição pelo cliente compartilhado e classifica o resultado.

    - erro de rede ou timeout → TransientRemote
    - 404 / 410               → RemoteNotFound
    - demais 4xx              → PermanentRemote
    - 5xx                     → TransientRemote
    """
    request.headers.setdefault("User-Agent", user_agent())
    try:
        response = await get_client().send(request)
    except httpx.TransportError as e:
        log.warning(f"{request.method} {request.url} falhou: {e}")
        raise TransientRemote(f"{request.method} {request.url}: {e}") from e

    log.info(f"{request.method} {request.url} → {response.status_code}")
    check_response(response)
    return response


def check_response(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    url = response.request.url
    if status in (404, 410):
        raise RemoteNotFound(f"{url} returned {status}")
    if status < 500:
        raise PermanentRemote(f"{url} returned {status}")
    raise TransientRemote(f"{url} returned {status}")
