import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actor: str | None
    action: str
    entity_type: str
    entity_id: uuid.UUID | None
    before_state: str | None
    after_state: str | None
    notes: str | None
    created_at: datetime
