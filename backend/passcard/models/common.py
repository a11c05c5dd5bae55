from __future__ import annotations

import uuid


def new_uuid() -> str:
    """Primary keys are UUID strings so they line up with auth subject ids."""
    return str(uuid.uuid4())
