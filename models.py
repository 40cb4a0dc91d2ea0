from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


inventory_tags = Table(
    "inventory_tags",
    Base.metadata,
    Column("item_id", Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True)
    # name and category hold ciphertext
    name = Column(Text, nullable=False)
    category = Column(Text, nullable=False)
    category_counter = Column(Integer, nullable=False, default=0)
    image_url = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    sizes = relationship(
        "InventorySize",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="InventorySize.id",
    )
    tags = relationship("Tag", secondary=inventory_tags, back_populates="items")


class InventorySize(Base):
    __tablename__ = "inventory_sizes"

    id = Column(Integer, primary_key=True)
    item_id = Column(Integer, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)
    # every column below is stored encrypted as text
    title = Column(Text, nullable=False)
    quantity = Column(Text, nullable=False)
    on_hand = Column(Text, nullable=False)
    price = Column(Text, nullable=False)

    item = relationship("InventoryItem", back_populates="sizes")


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    name = Column(String(512), unique=True, nullable=False)

    items = relationship("InventoryItem", secondary=inventory_tags, back_populates="tags")


class CategoryCounter(Base):
    __tablename__ = "category_counters"

    category = Column(String(512), primary_key=True)
    counter = Column(Integer, nullable=False, default=0)
