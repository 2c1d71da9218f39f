"""Pydantic schemas for the public display settings."""

from pydantic import BaseModel, Field


class DisplaySettingsUpdate(BaseModel):
    """Full replacement — every field is written, none are merged."""
    video_url: str = Field(default="", max_length=2048)
    title: str = Field(default="", max_length=255)
    subtitle: str = Field(default="", max_length=255)


class DisplaySettingsRead(BaseModel):
    video_url: str
    title: str
    subtitle: str

    model_config = {"from_attributes": True}
