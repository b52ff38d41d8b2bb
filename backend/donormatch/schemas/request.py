from __future__ import annotations

import math
from typing import List

from pydantic import BaseModel

from ..models.request import DonationRequest


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class RequestList(BaseModel):
    requests: List[DonationRequest]
    pagination: Pagination


def pagination(total: int, page: int, limit: int) -> Pagination:
    return Pagination(total=total, page=page, limit=limit, pages=math.ceil(total / limit))
