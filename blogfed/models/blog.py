"""
blogfed/models/blog.py

Modelos do sistema de blogs que hospeda o núcleo de federação.

Usuários, coleções (blogs) e posts pertencem ao restante da aplicação;
o núcleo apenas os lê para montar actors, outbox e atividades.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from blogfed.database import Base

# Visibilidades que participam da federação
FEDERATED_VISIBILITIES = frozenset({"public", "unlisted"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True)

    # Usuário silenciado pela administração: seus blogs somem da federação
    silenced: Mapped[bool] = mapped_column(Boolean, default=False)

    def __repr__(self) -> str:
        return f"<User username={self.username!r}>"


class Collection(Base):
    __tablename__ = "collections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Alias único e seguro para URL; vira o preferredUsername do actor
    alias: Mapped[str] = mapped_column(String(100), unique=True)
    title: Mapped[str] = mapped_column(String(255), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"))

    # public | unlisted | private | protected
    visibility: Mapped[str] = mapped_column(String(20), default="public")

    @property
    def display_title(self) -> str:
        return self.title or self.alias

    @property
    def is_federated(self) -> bool:
        return self.visibility in FEDERATED_VISIBILITIES

    def __repr__(self) -> str:
        return f"<Collection alias={self.alias!r}>"


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(20), primary_key=True)
    collection_id: Mapped[int] = mapped_column(ForeignKey("collections.id"), index=True)
    slug: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(String(255), default="")

    # Conteúdo-fonte em Markdown
    content: Mapped[str] = mapped_column(Text, default="")
    language: Mapped[str | None] = mapped_column(String(10), nullable=True)

    # Posts fixados ficam fora da outbox
    pinned_position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=_utcnow,
    )
    updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Post id={self.id!r} slug={self.slug!r}>"
