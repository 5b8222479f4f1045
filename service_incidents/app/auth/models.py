"""
Credential and identity models for the Auth Gateway.
"""

from dataclasses import dataclass

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class UserRecord:
    """A row of the Credential Store."""
    id: int
    username: str
    password_hash: str


@dataclass(frozen=True)
class Identity:
    """Authenticated identity carried by an access token."""
    user_id: int
    username: str


class CredentialsRequest(BaseModel):
    """Request body for register and login."""
    username: str = Field(..., min_length=1, description="Username (case-sensitive)")
    password: str = Field(..., min_length=1, description="Plaintext password")


class UserResponse(BaseModel):
    """Public view of a registered user."""
    id: int
    username: str


class LoginResponse(BaseModel):
    """Response model for a successful login."""
    message: str = "Login successful"
    token: str
