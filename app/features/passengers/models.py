"""
Passenger model. Every passenger belongs to exactly one program.
"""
from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin
from app.features.catalog.models import Program


class Passenger(Base, TimestampMixin):
    __tablename__ = "passengers"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    program_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("programs.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    program: Mapped[Program] = relationship(Program, lazy="selectin")

    def __repr__(self) -> str:
        return f"<Passenger(id={self.id}, name={self.name!r}, program_id={self.program_id})>"
