"""Template and catalog item schemas."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel


class TemplateCreate(BaseModel):
    """Schema for creating a template."""
    owner_id: int
    name: str
    subject: str
    html_content: Optional[str] = None
    text_content: Optional[str] = None
    is_active: bool = True


class TemplateResponse(TemplateCreate):
    """Schema for template response."""
    template_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CatalogItemCreate(BaseModel):
    """Schema for creating a catalog item."""
    title: str
    description: Optional[str] = None
    price: Optional[Decimal] = None
    image_url: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None


class CatalogItemResponse(CatalogItemCreate):
    """Schema for catalog item response."""
    item_id: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
