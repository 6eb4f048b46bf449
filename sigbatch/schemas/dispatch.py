from typing import List

from pydantic import BaseModel, Field

from ..config import DISPATCH_MAX_ITEMS


class DispatchRequest(BaseModel):
    item_ids: List[int] = Field(
        ...,
        min_length=1,
        max_length=DISPATCH_MAX_ITEMS,
        description="Signature ids to send, processed in this order",
    )
