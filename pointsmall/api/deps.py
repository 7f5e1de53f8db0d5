"""
Request dependencies - caller identity

Authentication happens in front of this service; it forwards the caller's id in
X-User-Id and, for back-office calls, the operator's id in X-Admin-Id.
"""
from fastapi import Header
from typing import Optional
from uuid import UUID


def get_current_user_id(x_user_id: UUID = Header(...)) -> UUID:
    return x_user_id


def get_admin_id(x_admin_id: Optional[UUID] = Header(None)) -> Optional[UUID]:
    return x_admin_id
