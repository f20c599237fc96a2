from typing import Optional

from fastapi import Header, HTTPException

from ..identity import Identity


def get_identity(
    x_user_id: Optional[str] = Header(None),
    x_display_name: Optional[str] = Header(None),
    x_guest: bool = Header(False),
) -> Identity:
    """Identity handed over by the caller's identity provider, per request."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return Identity(id=x_user_id, display_name=x_display_name or "", is_guest=x_guest)
