"""
blogfed/models/remote_user.py

Cache local de actors remotos e de suas chaves públicas.

Um RemoteUser é criado na primeira vez que é referenciado (Follow recebido,
menção resolvida ou consulta de handle) e nunca é removido pelo núcleo.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from blogfed.database import Base


class RemoteUser(Base):
    __tablename__ = "remoteusers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # IRI canônico do actor remoto, identificador único no Fediverso
    # ex: "https://mastodon.social/users/fulano"
    actor_id: Mapped[str] = mapped_column(String(2048), unique=True)

    inbox: Mapped[str] = mapped_column(String(2048))
    shared_inbox: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # URL do perfil para humanos
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Forma canônica @usuario@host
    handle: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=lambda: datetime.now(timezone.utc),
    )

    @property
    def delivery_inbox(self) -> str:
        """Inbox compartilhada quando existe, senão a inbox pessoal."""
        return self.shared_inbox or self.inbox

    def __repr__(self) -> str:
        return f"<RemoteUser actor_id={self.actor_id!r}>"


class RemoteUserKey(Base):
    __tablename__ = "remoteuserkeys"

    # keyId anunciado pelo actor, ex: "https://mastodon.social/users/fulano#main-key"
    id: Mapped[str] = mapped_column(String(2048), primary_key=True)
    remote_user_id: Mapped[int] = mapped_column(ForeignKey("remoteusers.id"), index=True)
    public_key: Mapped[str] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<RemoteUserKey id={self.id!r}>"
