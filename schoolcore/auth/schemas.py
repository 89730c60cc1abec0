from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated requester: the tenant context every service call is scoped by."""

    id: UUID
    tenant_id: UUID
    role: str
    full_name: str
