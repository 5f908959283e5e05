from pydantic import BaseModel
from typing import Optional

class GroupRecommendation(BaseModel):
    group_id: int
    group_name: str
    course_id: Optional[int] = None
    course_name: Optional[str] = None
    current_size: int
    max_size: int
    match_percentage: int
    match_reason: str
    current_variance: Optional[float] = None
    projected_variance: Optional[float] = None

class GroupMatchScore(BaseModel):
    group_id: int
    match_percentage: Optional[int] = None  # None when the user has no profile
    match_reason: str
    is_member: bool
    current_variance: Optional[float] = None
    projected_variance: Optional[float] = None

class GroupMatch(BaseModel):
    """Browse-list entry; unscored while the user has no profile."""
    group_id: int
    group_name: str
    course_id: Optional[int] = None
    course_name: Optional[str] = None
    course_code: Optional[str] = None
    visibility: str
    current_size: int
    max_size: int
    is_member: bool
    match_percentage: Optional[int] = None
    match_reason: str
    current_variance: Optional[float] = None
    projected_variance: Optional[float] = None
