"""Resolve a mint's on-chain metadata.

The Metaplex Token Metadata PDA is the primary source. Only when that account
does not exist is the Token-2022 metadata extension on the mint account tried.
An RPC failure on the primary lookup is raised, never treated as "absent".
"""

from typing import Protocol

import structlog
from solders.pubkey import Pubkey

from nftcache.models.token_metadata import TokenMetadata
from nftcache.services.blockchain.layouts import (
    LayoutError,
    decode_metaplex_metadata,
    decode_token_2022_metadata,
    find_metadata_address,
    read_mint_decimals,
)
from nftcache.services.blockchain.rpc_client import AccountInfo, AccountReader
from nftcache.services.exceptions import (
    InvalidMintError,
    MalformedMetadataError,
    MetadataNotFoundError,
)

logger = structlog.get_logger(__name__)

METAPLEX_METADATA_PROGRAM_ID = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"


class MetadataSource(Protocol):
    """Capability: resolve a mint to its metadata."""

    async def resolve(self, mint: str) -> TokenMetadata: ...


def parse_mint(mint: str) -> Pubkey:
    """Parse a base58 mint address.

    Raises:
        InvalidMintError: If the value is not a 32-byte base58 public key
    """
    if not isinstance(mint, str) or not 32 <= len(mint) <= 44:
        raise InvalidMintError(f"Invalid mint address: {mint!r}")
    try:
        return Pubkey.from_string(mint)
    except ValueError as e:
        raise InvalidMintError(f"Invalid mint address: {mint!r}") from e


class MetadataResolver:
    """MetadataSource reading Metaplex and Token-2022 metadata accounts."""

    def __init__(
        self,
        reader: AccountReader,
        metadata_program_id: str = METAPLEX_METADATA_PROGRAM_ID,
        token_2022_program_id: str = TOKEN_2022_PROGRAM_ID,
    ):
        self.reader = reader
        self.metadata_program_id = Pubkey.from_string(metadata_program_id)
        self.token_2022_program_id = Pubkey.from_string(token_2022_program_id)

    async def resolve(self, mint: str) -> TokenMetadata:
        """Resolve metadata for a mint.

        Returns:
            Unsaved TokenMetadata snapshot (version assigned on save)

        Raises:
            InvalidMintError: If the mint address cannot be parsed
            MetadataNotFoundError: If neither program holds metadata for the mint
            MalformedMetadataError: If a metadata account cannot be decoded
            RpcUnavailableError: On RPC transport failure (retryable)
        """
        mint_key = parse_mint(mint)
        pda = find_metadata_address(mint_key, self.metadata_program_id)

        metadata_account = await self.reader.get_account(pda)
        mint_account = await self.reader.get_account(mint_key)
        decimals = self._decimals(mint_account)

        if metadata_account is not None:
            try:
                decoded = decode_metaplex_metadata(metadata_account.data)
            except LayoutError as e:
                raise MalformedMetadataError(f"Metaplex metadata for {mint} is malformed: {e}") from e
            if decoded.mint != str(mint_key):
                raise MalformedMetadataError(
                    f"Metadata account {pda} describes mint {decoded.mint}, expected {mint}"
                )
            logger.debug("metadata.resolved", mint=mint, program="metaplex")
            return self._to_model(decoded, decimals)

        if mint_account is not None and mint_account.owner == self.token_2022_program_id:
            try:
                decoded = decode_token_2022_metadata(mint_account.data)
            except LayoutError as e:
                raise MalformedMetadataError(
                    f"Token-2022 metadata extension for {mint} is malformed: {e}"
                ) from e
            if decoded is not None:
                logger.debug("metadata.resolved", mint=mint, program="token-2022")
                return self._to_model(decoded, decimals, mint=str(mint_key))

        raise MetadataNotFoundError(f"No metadata account for mint {mint}")

    def _decimals(self, account: AccountInfo | None) -> int | None:
        if account is None:
            return None
        try:
            return read_mint_decimals(account.data)
        except LayoutError:
            logger.warning("metadata.mint_account_unreadable", address=str(account.address))
            return None

    @staticmethod
    def _to_model(decoded, decimals: int | None, mint: str | None = None) -> TokenMetadata:
        return TokenMetadata(
            mint=mint or decoded.mint,
            name=decoded.name,
            symbol=decoded.symbol,
            content_uri=decoded.uri,
            decimals=decimals,
            update_authority=decoded.update_authority,
            program=decoded.program,
            collection=decoded.collection,
            token_standard=decoded.token_standard,
        )
