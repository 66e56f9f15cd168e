"""
blogfed/models/follower.py

Aresta de Follow entre um blog local e um actor remoto.

Inserida quando um Follow é aceito, removida no Undo(Follow).
A restrição única (collection_id, remote_user_id) é a única guarda de
consistência contra Follows concorrentes do mesmo actor.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from blogfed.database import Base


class RemoteFollow(Base):
    __tablename__ = "remotefollows"
    __table_args__ = (
        UniqueConstraint("collection_id", "remote_user_id", name="uq_remotefollows_pair"),
    )

    collection_id: Mapped[int] = mapped_column(ForeignKey("collections.id"), primary_key=True)
    remote_user_id: Mapped[int] = mapped_column(ForeignKey("remoteusers.id"), primary_key=True)

    # insert_default é avaliado pelo SQLAlchemy no momento do INSERT,
    # garantindo o timezone correto independente da configuração do sistema
    created: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        insert_default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<RemoteFollow collection_id={self.collection_id!r} "
            f"remote_user_id={self.remote_user_id!r}>"
        )
