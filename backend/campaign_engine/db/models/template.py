"""Content sources for campaign steps: templates and catalog items."""
from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean
from campaign_engine.db.base import Base


class Template(Base):
    """Email template - subject plus html/text bodies."""

    __tablename__ = "templates"

    template_id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    subject = Column(String(500), nullable=False)
    html_content = Column(Text, nullable=True)
    text_content = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Template(template_id={self.template_id}, name='{self.name}')>"


class CatalogItem(Base):
    """Catalog item that catalog-based steps render into the email body."""

    __tablename__ = "catalog_items"

    item_id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=True)
    image_url = Column(String(1000), nullable=True)
    file_url = Column(String(1000), nullable=True)
    file_name = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogItem(item_id={self.item_id}, title='{self.title}')>"
