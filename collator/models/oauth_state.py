"""
OAuth state model.

Persists the single-use state values that bind an authorization request
to its callback, so any instance can validate the redirect.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from collator.models.base import BaseModel, UTCDateTime


class OAuthState(BaseModel):
    """
    Pending OAuth authorization.

    Attributes:
        value: Random state token sent to the provider
        file_key_hint: File the flow was started from (optional)
        expires_at: After this instant the state is treated as absent
    """

    __tablename__ = "oauth_states"

    value: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        doc="State token"
    )

    file_key_hint: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<OAuthState {self.value[:8]}...>"
