"""ORM model for refresh-token session records."""

from sqlalchemy import Column, ForeignKey, String

from celestial.models.base import Base, new_id


class RefreshToken(Base):
    """
    One row per login session. The id is embedded in the refresh token's
    claims; token_hash is the hash of the current refresh token and is
    replaced on every rotation.
    """

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(255), nullable=False)
