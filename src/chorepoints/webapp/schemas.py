"""Request bodies accepted by the ChorePoints web API."""
from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field


class ParentCreate(BaseModel):
    email: str
    name: Optional[str] = None


class FamilyCreate(BaseModel):
    parent_id: str


class ChildCreate(BaseModel):
    name: str
    email: Optional[str] = None


class CoParentAdd(BaseModel):
    email: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    profile_picture_url: Optional[str] = None


class TaskCreate(BaseModel):
    title: str
    points: int = Field(ge=0)
    assigned_child_ids: List[str] = Field(default_factory=list)
    linked_reward_ids: List[str] = Field(default_factory=list)
    created_by_parent_id: str
    family_id: str
    description: str = ""
    is_recurring: bool = False
    image_url: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    points: Optional[int] = Field(default=None, ge=0)
    is_recurring: Optional[bool] = None
    image_url: Optional[str] = None
    assigned_child_ids: Optional[List[str]] = None
    linked_reward_ids: Optional[List[str]] = None


class TaskSubmit(BaseModel):
    proof_image_url: Optional[str] = None


class RewardCreate(BaseModel):
    title: str
    required_points: int = Field(gt=0)
    created_by_parent_id: str
    family_id: str
    assigned_child_ids: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class RewardUpdate(BaseModel):
    title: Optional[str] = None
    required_points: Optional[int] = Field(default=None, gt=0)
    assigned_child_ids: Optional[List[str]] = None
    image_url: Optional[str] = None


class ClaimCreate(BaseModel):
    child_id: str


class ClaimPromise(BaseModel):
    promised_date: date


__all__ = [
    "ChildCreate",
    "ClaimCreate",
    "ClaimPromise",
    "CoParentAdd",
    "FamilyCreate",
    "ParentCreate",
    "ProfileUpdate",
    "RewardCreate",
    "RewardUpdate",
    "TaskCreate",
    "TaskSubmit",
    "TaskUpdate",
]
