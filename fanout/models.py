from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Node(Base):
    """One leaf of the JSON tree, addressed by its full slash path."""

    __tablename__ = "nodes"
    path = Column(String(512), primary_key=True)
    parent = Column(String(512), nullable=False, index=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

Index("idx_nodes_parent_path", Node.parent, Node.path)
