"""
Hangout API request models.
Used by routes and the lifecycle service for input validation.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from hangout_scheduler.models.domain.hangout_domain import ResponseDecision


class CreateHangoutRequest(BaseModel):
    """Fields needed to propose a hangout."""

    title: str = Field(..., min_length=1, max_length=200, description="Hangout title")
    description: str = Field(default="", max_length=1000, description="Hangout description")
    start_date: datetime = Field(..., description="Proposed start time")
    end_date: datetime = Field(..., description="Proposed end time")
    location: str | None = Field(default=None, max_length=500, description="Where to meet")
    creator_user_id: str = Field(..., min_length=1, description="User proposing the hangout")
    creator_persona_id: str | None = Field(
        default=None, description="Creator persona (default persona when omitted)"
    )
    invitee_user_id: str = Field(..., min_length=1, description="User being invited")
    invitee_persona_id: str = Field(..., min_length=1, description="Invitee persona")


class CreateHangoutBody(BaseModel):
    """HTTP body for creating a hangout; the creator comes from the caller identity."""

    title: str = Field(..., min_length=1, max_length=200, description="Hangout title")
    description: str = Field(default="", max_length=1000, description="Hangout description")
    start_date: datetime = Field(..., description="Proposed start time")
    end_date: datetime = Field(..., description="Proposed end time")
    location: str | None = Field(default=None, max_length=500, description="Where to meet")
    creator_persona_id: str | None = Field(default=None, description="Creator persona")
    invitee_user_id: str = Field(..., min_length=1, description="User being invited")
    invitee_persona_id: str = Field(..., min_length=1, description="Invitee persona")

    def for_creator(self, creator_user_id: str) -> CreateHangoutRequest:
        return CreateHangoutRequest(creator_user_id=creator_user_id, **self.model_dump())


class RespondRequest(BaseModel):
    """Invitee's answer to a pending hangout."""

    decision: ResponseDecision = Field(..., description="accepted or declined")

