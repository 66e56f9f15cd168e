"""
blogfed/database.py

Acesso ao banco do núcleo de federação (SQLAlchemy assíncrono).

As tabelas do blog (users, collections, posts) pertencem ao sistema que
hospeda o núcleo; aqui só as lemos. As de federação (chaves, usuários
remotos, seguidores) são criadas por `init_db()` no startup.

Todo acesso usa sessões curtas abertas pela fábrica do módulo; nenhum
código guarda sessão entre awaits de rede longos.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from blogfed.config import settings

# ---------------------------------------------------------------------------
# Engine e sessões
# ---------------------------------------------------------------------------

_connect_args = {}
if settings.database_url.startswith("sqlite"):
    # aiosqlite roda a conexão numa thread própria
    _connect_args["check_same_thread"] = False

engine = create_async_engine(settings.database_url, connect_args=_connect_args)

async_session_factory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
    class_=AsyncSession,
)


class Base(DeclarativeBase):
    pass


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncSession]:
    """Sessão com commit ao sair normalmente e rollback se algo levantar."""
    async with async_session_factory() as session:
        async with session.begin():
            yield session


# ---------------------------------------------------------------------------
# Inicialização
# ---------------------------------------------------------------------------

async def init_db() -> None:
    """Cria as tabelas que ainda não existem. Chamado no lifespan da aplicação."""
    # Registra os modelos no metadata antes do create_all
    from blogfed.models import blog, follower, keys, remote_user  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
