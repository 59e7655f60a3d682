from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from tagexplorer.models import Base


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    # Always stored trimmed and lowercased (see Repository.normalize_tag_name)
    name = Column(String(255), unique=True, nullable=False)
    color = Column(String(7), nullable=True)
    # Reserved for tag hierarchies; nothing reads it yet.
    parent_id = Column(Integer, ForeignKey("tags.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)
