"""
blogfed/activitypub/signatures.py

HTTP Signatures (draft-cavage) com RSA-SHA256, via apsig.

- `sign_request()`: assina um `httpx.Request` de saída, cobrindo
  `(request-target) date host digest`
- `verify_request()`: verifica o header `Signature` de uma requisição de
  entrada; a busca da chave pública é injetada (`fetch_key`), o que
  permite usar fixtures nos testes

O relógio não é conferido: `Date` só importa por fazer parte da string
assinada.
"""

import logging
import math
from typing import Awaitable, Callable, Mapping

import httpx
from apsig.draft import Signer, Verifier
from apsig.draft.tools import calculate_digest
from apsig.exceptions import SignatureError
from apsig.tools import get_draft_signature_parts

from blogfed.activitypub.keys import load_private_key
from blogfed.activitypub.remote_actor import PublicKey
from blogfed.errors import FederationError, SignatureInvalid

log = logging.getLogger(__name__)

SIGNED_HEADERS = ["(request-target)", "date", "host", "digest"]
# hs2019 com chave RSA é tratado como rsa-sha256, como faz o Mastodon
SUPPORTED_ALGORITHMS = {"rsa-sha256", "hs2019"}

FetchKey = Callable[[str], Awaitable[PublicKey]]


def compute_digest(body: bytes) -> str:
    """`SHA-256=<base64(sha256(body))>`."""
    return calculate_digest(body)


def parse_signature_header(value: str) -> dict[str, str]:
    try:
        return get_draft_signature_parts(value)
    except ValueError as e:
        raise SignatureInvalid("Malformed Signature header") from e


def sign_request(request: httpx.Request, key_id: str, private_key_pem: str) -> httpx.Request:
    """
    Adiciona `Date`, `Host`, `Digest` e `Signature` ao request e o devolve.

    GETs assinam o digest do corpo vazio, como fazem os POSTs com o corpo real.
    """
    body = request.content or b""
    signer = Signer(
        headers={
            "host": request.url.netloc.decode("ascii"),
            "digest": compute_digest(body),
        },
        private_key=load_private_key(private_key_pem),
        method=request.method,
        url=str(request.url),
        key_id=key_id,
        body=body,
        signed_headers=SIGNED_HEADERS,
    )
    signed = signer.sign()

    request.headers["Date"] = signed["date"]
    request.headers["Host"] = signed["host"]
    request.headers["Digest"] = signed["digest"]
    request.headers["Signature"] = signed["Signature"]
    return request


def _normalized_headers(headers: Mapping[str, str], params: dict[str, str]) -> dict[str, str]:
    """
    Headers em minúsculas com o `Signature` reescrito no formato que o
    Verifier do apsig aceita: `algorithm="rsa-sha256"` e `headers` explícito.
    """
    params = {
        **params,
        "algorithm": "rsa-sha256",
        "headers": params.get("headers", "date"),
    }
    normalized = {name.lower(): value for name, value in headers.items()}
    normalized["signature"] = ",".join(f'{name}="{value}"' for name, value in params.items())
    return normalized


async def verify_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    body: bytes,
    fetch_key: FetchKey,
) -> PublicKey:
    """
    Verifica a assinatura de uma requisição de entrada.

    `path` é o caminho como veio na linha de requisição, sem decodificar.
    Retorna a chave pública usada (com `owner`) ou levanta SignatureInvalid.
    """
    header = headers.get("signature")
    if not header:
        raise SignatureInvalid("Missing Signature header")

    params = parse_signature_header(header)
    key_id = params.get("keyId")
    if not key_id or not params.get("signature"):
        raise SignatureInvalid("Signature header lacks keyId or signature")

    algorithm = params.get("algorithm", "rsa-sha256").lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise SignatureInvalid(f"Unsupported signature algorithm {algorithm!r}")

    if body and not headers.get("digest"):
        raise SignatureInvalid("Missing Digest header")

    try:
        key = await fetch_key(key_id)
    except FederationError as e:
        log.info(f"Não foi possível obter a chave {key_id}: {e}")
        raise SignatureInvalid(f"Unable to fetch key {key_id}") from e

    try:
        Verifier(
            public_pem=key.public_key_pem,
            method=method,
            url=path,
            headers=_normalized_headers(headers, params),
            body=body,
            clock_skew=math.inf,
        ).verify(raise_on_fail=True)
    except (SignatureError, KeyError, ValueError) as e:
        # KeyError: header listado em `headers` ausente da requisição
        log.info(f"Assinatura inválida para {key_id}: {e}")
        raise SignatureInvalid("Signature verification failed") from e

    return key
