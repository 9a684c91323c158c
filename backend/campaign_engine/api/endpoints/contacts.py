"""Contact endpoints - recipients and the reply signal."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from campaign_engine.api.deps import get_db
from campaign_engine.db.models.contact import Contact
from campaign_engine.schemas.contact import ContactCreate, ContactResponse, ReplySignal
from campaign_engine.services.sequencing.lifecycle import mark_contact_replied

router = APIRouter(prefix="/contacts", tags=["Contacts"])


@router.post("", response_model=ContactResponse, status_code=status.HTTP_201_CREATED)
async def create_contact(contact_in: ContactCreate, db: Session = Depends(get_db)):
    """Create a contact."""
    email = contact_in.email.lower()
    existing = db.query(Contact).filter(Contact.owner_id == contact_in.owner_id, Contact.email == email).first()
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Contact with this email already exists"
        )

    contact = Contact(**contact_in.model_dump(exclude={"email"}), email=email)
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


@router.get("", response_model=List[ContactResponse])
async def list_contacts(owner_id: Optional[int] = None, db: Session = Depends(get_db)):
    """List contacts."""
    query = db.query(Contact)
    if owner_id is not None:
        query = query.filter(Contact.owner_id == owner_id)
    return query.order_by(Contact.contact_id).all()


@router.get("/{contact_id}", response_model=ContactResponse)
async def get_contact(contact_id: int, db: Session = Depends(get_db)):
    """Get contact by ID."""
    contact = db.get(Contact, contact_id)
    if not contact:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    return contact


@router.post("/{contact_id}/replied", response_model=ContactResponse)
async def contact_replied(contact_id: int, signal: Optional[ReplySignal] = None, db: Session = Depends(get_db)):
    """Record that the contact replied. Later steps with require_no_reply are skipped."""
    contact = mark_contact_replied(db, contact_id, signal.replied_at if signal else None)
    if not contact:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contact not found")
    return contact
