"""
blogfed/activitypub/keys.py

Par de chaves RSA por blog.

O par é gerado na primeira vez que o blog precisa assinar algo ou servir
o seu actor, e depois apenas lido do banco. Gerações concorrentes para o
mesmo blog convergem para o par que ganhou o INSERT.
"""

import logging
from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.exc import IntegrityError

from blogfed import database
from blogfed.activitypub.actor import actor_iri
from blogfed.config import settings
from blogfed.errors import InternalError
from blogfed.models.keys import INSTANCE_COLLECTION_ID, CollectionKey

log = logging.getLogger(__name__)

KEY_SIZE = 2048


@dataclass(frozen=True)
class SigningKey:
    key_id: str
    private_key_pem: str


def generate_keypair() -> tuple[str, str]:
    """Gera um par RSA de 2048 bits e devolve (public_pem, private_pem)."""
    try:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    except (UnsupportedAlgorithm, ValueError) as e:
        raise InternalError(f"Unable to generate RSA keypair: {e}") from e
    return public_pem.decode(), private_pem.decode()


def load_private_key(pem: str):
    return serialization.load_pem_private_key(pem.encode(), password=None)


def load_public_key(pem: str):
    return serialization.load_pem_public_key(pem.encode())


async def _read_keypair(collection_id: int) -> tuple[str, str] | None:
    async with database.async_session_factory() as session:
        row = await session.get(CollectionKey, collection_id)
        if row is None:
            return None
        return row.public_key, row.private_key


async def get_or_create_keypair(collection_id: int) -> tuple[str, str]:
    """
    Retorna o par (public_pem, private_pem) do blog, gerando-o se preciso.

    Usa uma transação própria para o INSERT: se outro request ganhou a
    corrida, a restrição de chave primária dispara e relemos o par gravado.
    """
    existing = await _read_keypair(collection_id)
    if existing is not None:
        return existing

    public_pem, private_pem = generate_keypair()
    try:
        async with database.transaction() as session:
            session.add(
                CollectionKey(
                    collection_id=collection_id,
                    public_key=public_pem,
                    private_key=private_pem,
                )
            )
    except IntegrityError:
        log.info(f"Par de chaves da coleção {collection_id} criado concorrentemente; relendo")
        existing = await _read_keypair(collection_id)
        if existing is None:
            raise InternalError(f"Keypair for collection {collection_id} vanished")
        return existing

    log.info(f"Par de chaves gerado para a coleção {collection_id}")
    return public_pem, private_pem


async def get_public_key_pem(collection_id: int) -> str:
    public_pem, _ = await get_or_create_keypair(collection_id)
    return public_pem


async def signing_key_for(alias: str, collection_id: int) -> SigningKey:
    """Chave usada para assinar requisições em nome do actor `alias`."""
    _, private_pem = await get_or_create_keypair(collection_id)
    return SigningKey(key_id=f"{actor_iri(alias)}#main-key", private_key_pem=private_pem)


async def instance_signing_key() -> SigningKey:
    """Chave do actor da instância, usada nos GETs de resolução de actors."""
    return await signing_key_for(settings.domain, INSTANCE_COLLECTION_ID)
