from pydantic import BaseModel
from datetime import datetime

class MembershipResponse(BaseModel):
    group_id: int
    user_id: int
    is_member: bool
    current_size: int
    max_size: int

class GroupProfileResponse(BaseModel):
    group_id: int
    average_role_scores: dict[str, float]
    member_count: int
    current_variance: float
    last_updated_at: datetime

    model_config = {"from_attributes": True}
