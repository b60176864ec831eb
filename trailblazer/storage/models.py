"""Assignment and node records as stored by the record store."""

from typing import Optional

from pydantic import BaseModel


class AssignmentRecord(BaseModel):
    local_id: Optional[int] = None
    title: str
    description: str
    created_at: str


class NodeRecord(BaseModel):
    local_id: Optional[int] = None
    local_assignment_id: int
    tab_id: int
    title: Optional[str] = None
    url: Optional[str] = None
