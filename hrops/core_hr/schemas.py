"""Directory Pydantic schemas — the engine's read view of an employee."""

from __future__ import annotations

import uuid
from datetime import time
from typing import Optional

from pydantic import BaseModel, ConfigDict

from hrops.common.constants import EmployeeStatus, UserRole


class EmployeeBrief(BaseModel):
    """Identity and scheduling fields the engine reads from the directory."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_code: str
    full_name: str
    email: str
    status: EmployeeStatus
    role: UserRole
    working_days: list[str]
    late_threshold: Optional[time] = None


class EmployeeActivated(EmployeeBrief):
    """Activation result with the freshly opened annual-leave summary."""

    total_annual_leave: int
    used_annual_leave: int
    remaining_annual_leave: int
