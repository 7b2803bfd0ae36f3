"""Pydantic request/response schemas for the Retroboard API."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

Priority = Literal["High", "Medium", "Low"]
ItemCategory = Literal["went_well", "improve", "kudos", "product_design"]


class _Stripped(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def strip_strings(cls, v):
        return v.strip() if isinstance(v, str) else v


class RetroCreate(_Stripped):
    name: str = Field(min_length=1, max_length=300)


class RetroOut(BaseModel):
    id: int
    name: str
    created_at: str | None = None
    date: str = ""


class ItemCreate(_Stripped):
    content: str = Field(min_length=1)


class ItemOut(BaseModel):
    id: int
    content: str
    created_at: str | None = None
    upvotes: int = 0
    has_upvoted: bool = False


class UpvoteToggle(BaseModel):
    has_upvoted: bool = False


class ActionItemCreate(_Stripped):
    description: str = Field(min_length=1)
    owner: str = Field(min_length=1, max_length=200)
    priority: Priority = "Medium"
    # Accepted from the form, never stored.
    due_date: str | None = None


class ActionItemOut(BaseModel):
    id: int
    description: str
    owner: str
    priority: Priority = "Medium"
    created_at: str | None = None


class SectionOut(BaseModel):
    id: int | None
    name: str
    title: str
    prompts: list[str] = []
    items: list[ItemOut] = []
    action_items: list[ActionItemOut] = []


class PageMeta(BaseModel):
    title: str
    description: str
    url: str


class BoardOut(BaseModel):
    retro: RetroOut
    sections: list[SectionOut]
    meta: PageMeta


class ResultItemOut(BaseModel):
    id: int
    content: str
    created_at: str | None = None
    upvotes: int = 0


class ResultActionItemOut(BaseModel):
    id: int
    description: str
    assigned_owner: str
    priority: str
    created_at: str | None = None


class ResultSectionOut(BaseModel):
    id: int
    name: str
    title: str
    items: list[ResultItemOut] = []
    action_items: list[ResultActionItemOut] | None = None


class SectionCount(BaseModel):
    name: str
    title: str
    count: int


class ResultsOut(BaseModel):
    id: int
    name: str
    created_at: str | None = None
    date: str = ""
    sections: list[ResultSectionOut]
    summary: list[SectionCount]
    meta: PageMeta
