from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from tagexplorer.models import Base


class File(Base):
    __tablename__ = "files"

    id = Column(Integer, primary_key=True)
    # Display name; may be replaced by the AI-suggested name or a manual rename.
    name = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)
    media_type = Column(String(100), nullable=False)
    size = Column(Integer, nullable=True)
    # Opaque id handed out by the blob store on upload
    storage_id = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime, server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)
    # Set while the file sits in the trash; cleared on restore.
    deleted_at = Column(DateTime, nullable=True, index=True)
