"""Contacts Router - roster CRUD, recent contacts and sightings."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field

from api.dependencies import get_store
from face_recall.contacts import RECENT_LIMIT, RELATIONSHIP_OPTIONS, ContactStore

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Pydantic Models
# =============================================================================

class ContactFields(BaseModel):
    """Editable contact fields; ``contact`` is the phone/contact detail."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    relationship: Optional[str] = None
    avatar: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    contact: Optional[str] = None

    def to_store_fields(self) -> Dict[str, Any]:
        values = self.model_dump(exclude_unset=True)
        if "contact" in values:
            values["phone"] = values.pop("contact")
        return values


class SightingRequest(BaseModel):
    location: Optional[str] = Field(None, description="Where the contact was seen")


# =============================================================================
# Roster Endpoints
# =============================================================================

@router.get("")
def list_contacts(
    search: Optional[str] = Query(None, description="Filter by name or relationship"),
    store: ContactStore = Depends(get_store),
) -> dict:
    contacts = store.search(search) if search else store.list()
    return {"contacts": [c.to_api_dict() for c in contacts], "count": len(contacts)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_contact(
    request: ContactFields,
    store: ContactStore = Depends(get_store),
) -> dict:
    contact = store.create(request.to_store_fields())
    return {"contact": contact.to_api_dict()}


@router.get("/recent")
def recent_contacts(
    limit: int = Query(RECENT_LIMIT, ge=1, le=50),
    store: ContactStore = Depends(get_store),
) -> dict:
    contacts = store.recent(limit)
    return {"contacts": [c.to_api_dict() for c in contacts], "count": len(contacts)}


@router.get("/relationships")
def relationship_options() -> dict:
    return {"relationships": RELATIONSHIP_OPTIONS}


@router.get("/{contact_id}")
def get_contact(contact_id: str, store: ContactStore = Depends(get_store)) -> dict:
    return {"contact": store.get(contact_id).to_api_dict()}


@router.patch("/{contact_id}")
def update_contact(
    contact_id: str,
    request: ContactFields,
    store: ContactStore = Depends(get_store),
) -> dict:
    contact = store.update(contact_id, request.to_store_fields())
    return {"contact": contact.to_api_dict()}


@router.delete("/{contact_id}")
def delete_contact(contact_id: str, store: ContactStore = Depends(get_store)) -> dict:
    store.delete(contact_id)
    return {"deleted": contact_id}


# =============================================================================
# Sighting Endpoints
# =============================================================================

@router.post("/{contact_id}/sightings", status_code=status.HTTP_201_CREATED)
def record_sighting(
    contact_id: str,
    request: SightingRequest,
    store: ContactStore = Depends(get_store),
) -> dict:
    sighting = store.record_sighting(contact_id, request.location)
    return {
        "sighting": sighting.to_api_dict(),
        "contact": store.get(contact_id).to_api_dict(),
    }


@router.get("/{contact_id}/sightings")
def list_sightings(contact_id: str, store: ContactStore = Depends(get_store)) -> dict:
    """Sighting history, newest first. Survives deletion of the contact."""
    sightings = list(reversed(store.sightings(contact_id)))
    return {"sightings": [s.to_api_dict() for s in sightings], "count": len(sightings)}
