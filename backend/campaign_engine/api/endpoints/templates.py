"""Content source endpoints - templates and catalog items."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from campaign_engine.api.deps import get_db
from campaign_engine.db.models.template import Template, CatalogItem
from campaign_engine.schemas.template import TemplateCreate, TemplateResponse, CatalogItemCreate, CatalogItemResponse

router = APIRouter(prefix="/templates", tags=["Templates"])
catalog_router = APIRouter(prefix="/catalog-items", tags=["Catalog"])


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(template_in: TemplateCreate, db: Session = Depends(get_db)):
    """Create an email template."""
    template = Template(**template_in.model_dump())
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


@router.get("", response_model=List[TemplateResponse])
async def list_templates(owner_id: Optional[int] = None, db: Session = Depends(get_db)):
    """List templates."""
    query = db.query(Template)
    if owner_id is not None:
        query = query.filter(Template.owner_id == owner_id)
    return query.order_by(Template.template_id).all()


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(template_id: int, db: Session = Depends(get_db)):
    """Get template by ID."""
    template = db.get(Template, template_id)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return template


@catalog_router.post("", response_model=CatalogItemResponse, status_code=status.HTTP_201_CREATED)
async def create_catalog_item(item_in: CatalogItemCreate, db: Session = Depends(get_db)):
    """Create a catalog item."""
    item = CatalogItem(**item_in.model_dump())
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@catalog_router.get("", response_model=List[CatalogItemResponse])
async def list_catalog_items(db: Session = Depends(get_db)):
    """List catalog items."""
    return db.query(CatalogItem).order_by(CatalogItem.item_id).all()
