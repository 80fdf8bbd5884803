"""SQLAlchemy table definitions"""
from typing import Optional

from sqlalchemy import Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class ExpenseRow(Base):
    """
    One stored expense.

    `file_url` holds either a bare object key or an absolute URL; signed
    download URLs are never written back here.
    """
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    file_url: Mapped[Optional[str]] = mapped_column(String, nullable=True, default=None)

    def __repr__(self) -> str:
        return f"ExpenseRow(id={self.id!r}, title={self.title!r}, amount={self.amount!r}, file_url={self.file_url!r})"
