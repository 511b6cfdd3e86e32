"""TokenMetadata entity - versioned on-chain metadata snapshots."""

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from nftcache.core.timezone import utcnow


class TokenMetadata(SQLModel, table=True):
    """TokenMetadata is an immutable snapshot of a mint's on-chain metadata.

    Re-resolution never edits a row: changed metadata is stored as a new
    version for the same mint.
    """

    __tablename__ = "token_metadata"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("mint", "version", name="uq_token_metadata_mint_version"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    mint: str = Field(max_length=44, index=True)
    version: int = Field(default=1, ge=1)
    name: str = Field(default="", max_length=255)
    symbol: str = Field(default="", max_length=32)
    content_uri: str = Field(default="")
    decimals: Optional[int] = Field(default=None)
    update_authority: Optional[str] = Field(default=None, max_length=44)
    program: str = Field(max_length=20)  # "metaplex" or "token-2022"
    collection: Optional[str] = Field(default=None, max_length=44)
    token_standard: Optional[int] = Field(default=None)
    resolved_at: datetime = Field(default_factory=utcnow)

    def same_content(self, other: "TokenMetadata") -> bool:
        """True if `other` carries the same resolved attributes."""
        return (
            self.name,
            self.symbol,
            self.content_uri,
            self.decimals,
            self.update_authority,
            self.program,
            self.collection,
            self.token_standard,
        ) == (
            other.name,
            other.symbol,
            other.content_uri,
            other.decimals,
            other.update_authority,
            other.program,
            other.collection,
            other.token_standard,
        )
