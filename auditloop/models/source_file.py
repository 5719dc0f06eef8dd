"""ORM model for source files referenced by issues (identity only, no content)."""

from sqlalchemy import Column, Integer, Text

from auditloop.models.base import Base


class SourceFile(Base):
    """Unique project-relative path, created on first reference by an issue."""

    __tablename__ = "files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(Text, nullable=False, unique=True)
