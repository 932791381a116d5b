"""
SHOP - Query Models

Flattened, read-optimized views of aggregate state. They are derived
from domain events by the read model synchronizer and stored through
the read mapping registry.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from domain.entities import Gender


@dataclass
class BaseQueryModel:
    """Root of every query model; id maps to the document key."""
    id: str = ""


@dataclass
class CustomerQueryModel(BaseQueryModel):
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    gender: Optional[Gender] = None
    email: str = ""
    date_of_birth: Optional[date] = None
    created_at: Optional[datetime] = None
