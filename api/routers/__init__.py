"""API Routers Package.

- contacts.py: roster CRUD, recent contacts, sightings
- recognition.py: capture-to-disposition recognition sessions

Usage in main.py:
    from api.routers import contacts_router, recognition_router

    app.include_router(contacts_router, prefix="/contacts", tags=["contacts"])
    app.include_router(recognition_router, prefix="/recognition", tags=["recognition"])
"""

from .contacts import router as contacts_router
from .recognition import router as recognition_router

__all__ = [
    "contacts_router",
    "recognition_router",
]
