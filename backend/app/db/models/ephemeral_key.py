from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.db.types import UTCDateTime, utcnow


class EphemeralKey(Base):
    __tablename__ = "ephemeral_keys"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # PEM-encoded SubjectPublicKeyInfo.
    public_key: Mapped[str] = mapped_column(Text, nullable=False)
    alg: Mapped[str] = mapped_column(String(32), nullable=False, default="ed25519")
    # Comma-joined flat scope tags, e.g. "room:create,room:approve".
    scope: Mapped[str] = mapped_column(String(1024), nullable=False)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow, index=True)

    @property
    def scopes(self) -> list[str]:
        return [s for s in self.scope.split(",") if s]
