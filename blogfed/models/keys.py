"""
blogfed/models/keys.py

Par de chaves RSA de cada blog federado.

Uma linha por coleção, criada sob demanda e nunca rotacionada.
`collection_id = 0` guarda o par de chaves do actor da instância.
"""

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from blogfed.database import Base

INSTANCE_COLLECTION_ID = 0


class CollectionKey(Base):
    __tablename__ = "collectionkeys"

    # Sem FK: o actor da instância não é uma coleção
    collection_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    public_key: Mapped[str] = mapped_column(Text)
    private_key: Mapped[str] = mapped_column(Text)

    def __repr__(self) -> str:
        return f"<CollectionKey collection_id={self.collection_id!r}>"
