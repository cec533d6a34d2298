from typing import Literal, Optional

from pydantic import BaseModel


class ApiCaller(BaseModel):
    """
    Identity of a caller authenticated by API key.

    ``internal`` callers are the bot transport; ``admin`` callers are the
    admin panel. ``name`` is recorded on audit fields (e.g. ``resolved_by``).
    """

    role: Literal["internal", "admin"]
    name: Optional[str] = None
