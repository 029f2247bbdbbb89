"""First-run example roster and form constants."""
from __future__ import annotations

from typing import Any, Dict, List

PLACEHOLDER_AVATAR = (
    "https://images.pexels.com/photos/1222271/pexels-photo-1222271.jpeg"
    "?auto=compress&cs=tinysrgb&w=150&h=150&dpr=2"
)

RELATIONSHIP_OPTIONS = [
    "Spouse",
    "Partner",
    "Son",
    "Daughter",
    "Father",
    "Mother",
    "Brother",
    "Sister",
    "Grandson",
    "Granddaughter",
    "Friend",
    "Neighbor",
    "Caregiver",
    "Doctor",
    "Other",
]


def _pexels(photo_id: int) -> str:
    return (
        f"https://images.pexels.com/photos/{photo_id}/pexels-photo-{photo_id}.jpeg"
        "?auto=compress&cs=tinysrgb&w=150&h=150&dpr=2"
    )


SEED_CONTACTS: List[Dict[str, Any]] = [
    {
        "id": "1",
        "name": "Samantha R.",
        "relationship": "Wife",
        "avatar": _pexels(774909),
        "last_seen": "6pm • Golden Gate",
        "location": "Golden Gate",
    },
    {
        "id": "2",
        "name": "Sarah J",
        "relationship": "Daughter",
        "avatar": _pexels(1239291),
        "last_seen": "5pm • Peet's Cafe",
        "location": "Peet's Cafe",
    },
    {
        "id": "3",
        "name": "Liam Torres",
        "relationship": "Grandson",
        "avatar": _pexels(1043471),
        "last_seen": "4pm • Home",
        "location": "Home",
    },
    {
        "id": "4",
        "name": "Brianna Lee",
        "relationship": "Neice",
        "avatar": _pexels(1181686),
        "last_seen": "11am • 3 Jun 2025",
        "location": "Park",
    },
]
