"""Identity context threaded through session joins and quiz ownership."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import uuid4


@dataclass(frozen=True, slots=True)
class Identity:
    """Stable identity handed over by the identity provider."""

    id: str
    display_name: str
    is_guest: bool = False


def mint_guest_identity(nickname: str) -> Identity:
    """Issue a self-contained guest identity; the id is an opaque unique token."""
    display_name = nickname.strip() or "Guest"
    return Identity(id=f"guest_{uuid4().hex}", display_name=display_name, is_guest=True)
