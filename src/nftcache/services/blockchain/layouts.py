"""Binary layouts for Solana token metadata accounts.

Two sources are understood:
- Metaplex Token Metadata `MetadataV1` accounts, stored at the PDA derived from
  ("metadata", program id, mint)
- The Token-2022 `TokenMetadata` extension, stored in the mint account's TLV area

Both use borsh encoding: little-endian integers, u32-length-prefixed strings,
one-byte tags for Option.
"""

import struct
from dataclasses import dataclass, field

from solders.pubkey import Pubkey

METADATA_SEED = b"metadata"
METADATA_V1_KEY = 4

# SPL mint layout: COption<Pubkey> authority (36) + u64 supply (8), then decimals
MINT_DECIMALS_OFFSET = 44
MINT_BASE_SIZE = 82
# Token-2022 pads mints to the token-account size before the account-type byte
TOKEN_2022_ACCOUNT_TYPE_OFFSET = 165
TOKEN_2022_ACCOUNT_TYPE_MINT = 1
TOKEN_2022_METADATA_EXTENSION = 19

CREATOR_SIZE = 34  # Pubkey + verified (bool) + share (u8)


class LayoutError(ValueError):
    """Account data does not match the expected layout."""

    pass


@dataclass
class DecodedMetadata:
    """Fields decoded from a metadata account."""

    mint: str
    name: str
    symbol: str
    uri: str
    update_authority: str | None
    program: str
    collection: str | None = None
    token_standard: int | None = None
    seller_fee_basis_points: int | None = None
    additional: dict[str, str] = field(default_factory=dict)


class BorshReader:
    """Sequential reader over borsh-encoded bytes with bounds checking."""

    def __init__(self, data: bytes, offset: int = 0):
        self.data = data
        self.offset = offset

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, size: int) -> bytes:
        if size < 0 or self.offset + size > len(self.data):
            raise LayoutError(
                f"Read of {size} bytes at offset {self.offset} overruns {len(self.data)}-byte account"
            )
        chunk = self.data[self.offset : self.offset + size]
        self.offset += size
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self.read(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.read(4))[0]

    def bool(self) -> bool:
        value = self.u8()
        if value > 1:
            raise LayoutError(f"Invalid bool byte {value} at offset {self.offset - 1}")
        return value == 1

    def pubkey(self) -> Pubkey:
        return Pubkey.from_bytes(self.read(32))

    def string(self) -> str:
        raw = self.read(self.u32())
        try:
            # Metaplex pads fixed-width fields with NUL bytes
            return raw.decode("utf-8").rstrip("\x00").strip()
        except UnicodeDecodeError as e:
            raise LayoutError(f"Invalid UTF-8 string ending at offset {self.offset}") from e

    def option_tag(self) -> bool:
        tag = self.u8()
        if tag > 1:
            raise LayoutError(f"Invalid Option tag {tag} at offset {self.offset - 1}")
        return tag == 1


def find_metadata_address(mint: Pubkey, program_id: Pubkey) -> Pubkey:
    """Derive the Metaplex metadata PDA for a mint."""
    address, _bump = Pubkey.find_program_address(
        [METADATA_SEED, bytes(program_id), bytes(mint)], program_id
    )
    return address


def decode_metaplex_metadata(data: bytes) -> DecodedMetadata:
    """Decode a Metaplex `MetadataV1` account.

    Older accounts end after the creators/flags section; trailing optional
    fields that are absent are left as None.

    Raises:
        LayoutError: If the account is not a MetadataV1 account or is truncated
    """
    reader = BorshReader(data)
    key = reader.u8()
    if key != METADATA_V1_KEY:
        raise LayoutError(f"Unexpected metadata account key {key} (expected {METADATA_V1_KEY})")

    update_authority = reader.pubkey()
    mint = reader.pubkey()
    name = reader.string()
    symbol = reader.string()
    uri = reader.string()
    seller_fee = reader.u16()

    if reader.option_tag():
        creator_count = reader.u32()
        reader.read(creator_count * CREATOR_SIZE)

    decoded = DecodedMetadata(
        mint=str(mint),
        name=name,
        symbol=symbol,
        uri=uri,
        update_authority=str(update_authority),
        program="metaplex",
        seller_fee_basis_points=seller_fee,
    )

    # primary_sale_happened, is_mutable
    reader.bool()
    reader.bool()

    # Optional trailing fields, absent on older accounts
    if reader.remaining and reader.option_tag():
        reader.u8()  # edition_nonce
    if reader.remaining and reader.option_tag():
        decoded.token_standard = reader.u8()
    if reader.remaining and reader.option_tag():
        verified = reader.bool()
        collection_key = reader.pubkey()
        if verified:
            decoded.collection = str(collection_key)

    return decoded


def read_mint_decimals(data: bytes) -> int:
    """Read the decimals field of an SPL / Token-2022 mint account."""
    if len(data) < MINT_BASE_SIZE:
        raise LayoutError(f"Mint account too short ({len(data)} bytes)")
    return data[MINT_DECIMALS_OFFSET]


def iter_token_2022_extensions(data: bytes):
    """Yield (extension_type, value_bytes) from a Token-2022 mint's TLV area."""
    if len(data) <= TOKEN_2022_ACCOUNT_TYPE_OFFSET:
        return
    account_type = data[TOKEN_2022_ACCOUNT_TYPE_OFFSET]
    if account_type != TOKEN_2022_ACCOUNT_TYPE_MINT:
        raise LayoutError(f"Account type {account_type} is not a mint")

    reader = BorshReader(data, TOKEN_2022_ACCOUNT_TYPE_OFFSET + 1)
    while reader.remaining >= 4:
        extension_type = reader.u16()
        length = reader.u16()
        if extension_type == 0:
            # Uninitialized entry marks the end of the TLV data
            return
        yield extension_type, reader.read(length)


def decode_token_2022_metadata(data: bytes) -> DecodedMetadata | None:
    """Decode the TokenMetadata extension of a Token-2022 mint account.

    Returns:
        DecodedMetadata, or None if the mint has no metadata extension

    Raises:
        LayoutError: If the TLV area or the extension value is malformed
    """
    for extension_type, value in iter_token_2022_extensions(data):
        if extension_type != TOKEN_2022_METADATA_EXTENSION:
            continue

        reader = BorshReader(value)
        authority_bytes = reader.read(32)
        mint = reader.pubkey()
        name = reader.string()
        symbol = reader.string()
        uri = reader.string()

        additional: dict[str, str] = {}
        if reader.remaining:
            for _ in range(reader.u32()):
                key = reader.string()
                additional[key] = reader.string()

        # OptionalNonZeroPubkey: all zeroes means no authority
        update_authority = (
            str(Pubkey.from_bytes(authority_bytes)) if any(authority_bytes) else None
        )
        return DecodedMetadata(
            mint=str(mint),
            name=name,
            symbol=symbol,
            uri=uri,
            update_authority=update_authority,
            program="token-2022",
            additional=additional,
        )
    return None
