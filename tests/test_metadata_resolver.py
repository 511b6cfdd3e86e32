"""MetadataResolver tests against an in-memory account reader."""

import pytest
from solders.pubkey import Pubkey

from factories import (
    METADATA_PROGRAM,
    TOKEN_2022_PROGRAM,
    TOKEN_PROGRAM,
    FakeAccountReader,
    metaplex_metadata_data,
    mint_data,
    token_2022_mint_data,
)
from nftcache.services.blockchain.layouts import find_metadata_address
from nftcache.services.blockchain.metadata_resolver import MetadataResolver, parse_mint
from nftcache.services.exceptions import (
    InvalidMintError,
    MalformedMetadataError,
    MetadataNotFoundError,
    RpcUnavailableError,
)


@pytest.fixture
def reader():
    return FakeAccountReader()


@pytest.fixture
def resolver(reader):
    return MetadataResolver(reader)


@pytest.mark.asyncio
async def test_resolves_metaplex_metadata(reader, resolver):
    mint = Pubkey.new_unique()
    pda = find_metadata_address(mint, METADATA_PROGRAM)
    reader.add(pda, METADATA_PROGRAM, metaplex_metadata_data(mint, uri="https://example.com/7.json"))
    reader.add(mint, TOKEN_PROGRAM, mint_data(decimals=0))

    metadata = await resolver.resolve(str(mint))

    assert metadata.mint == str(mint)
    assert metadata.program == "metaplex"
    assert metadata.content_uri == "https://example.com/7.json"
    assert metadata.decimals == 0
    assert metadata.id is None  # not persisted by the resolver


@pytest.mark.asyncio
async def test_falls_back_to_token_2022_when_pda_absent(reader, resolver):
    mint = Pubkey.new_unique()
    reader.add(mint, TOKEN_2022_PROGRAM, token_2022_mint_data(mint, uri="ar://tx123", decimals=0))

    metadata = await resolver.resolve(str(mint))

    assert metadata.program == "token-2022"
    assert metadata.content_uri == "ar://tx123"
    assert metadata.decimals == 0


@pytest.mark.asyncio
async def test_metaplex_wins_over_token_2022(reader, resolver):
    mint = Pubkey.new_unique()
    pda = find_metadata_address(mint, METADATA_PROGRAM)
    reader.add(pda, METADATA_PROGRAM, metaplex_metadata_data(mint, uri="https://primary/1.json"))
    reader.add(mint, TOKEN_2022_PROGRAM, token_2022_mint_data(mint, uri="https://secondary/1.json"))

    metadata = await resolver.resolve(str(mint))

    assert metadata.content_uri == "https://primary/1.json"


@pytest.mark.asyncio
async def test_not_found_under_either_program(reader, resolver):
    mint = Pubkey.new_unique()
    reader.add(mint, TOKEN_PROGRAM, mint_data())

    with pytest.raises(MetadataNotFoundError):
        await resolver.resolve(str(mint))


@pytest.mark.asyncio
async def test_token_2022_mint_without_metadata_is_not_found(reader, resolver):
    mint = Pubkey.new_unique()
    reader.add(mint, TOKEN_2022_PROGRAM, token_2022_mint_data(mint, with_metadata=False))

    with pytest.raises(MetadataNotFoundError):
        await resolver.resolve(str(mint))


@pytest.mark.asyncio
async def test_malformed_primary_account(reader, resolver):
    mint = Pubkey.new_unique()
    pda = find_metadata_address(mint, METADATA_PROGRAM)
    reader.add(pda, METADATA_PROGRAM, b"\x04" + b"\x00" * 20)

    with pytest.raises(MalformedMetadataError):
        await resolver.resolve(str(mint))


@pytest.mark.asyncio
async def test_primary_account_for_other_mint_is_malformed(reader, resolver):
    mint = Pubkey.new_unique()
    pda = find_metadata_address(mint, METADATA_PROGRAM)
    reader.add(pda, METADATA_PROGRAM, metaplex_metadata_data(Pubkey.new_unique()))

    with pytest.raises(MalformedMetadataError, match="describes mint"):
        await resolver.resolve(str(mint))


@pytest.mark.asyncio
async def test_malformed_token_2022_extension(reader, resolver):
    mint = Pubkey.new_unique()
    reader.add(mint, TOKEN_2022_PROGRAM, token_2022_mint_data(mint)[:-10])

    with pytest.raises(MalformedMetadataError):
        await resolver.resolve(str(mint))


@pytest.mark.asyncio
async def test_primary_rpc_failure_is_not_a_fallback(reader, resolver):
    """An RPC error on the PDA lookup propagates; the mint account is never read."""
    mint = Pubkey.new_unique()
    pda = find_metadata_address(mint, METADATA_PROGRAM)
    reader.errors[pda] = RpcUnavailableError("connection refused")
    reader.add(mint, TOKEN_2022_PROGRAM, token_2022_mint_data(mint))

    with pytest.raises(RpcUnavailableError):
        await resolver.resolve(str(mint))

    assert reader.calls == [pda]


@pytest.mark.asyncio
async def test_invalid_mint_rejected_before_rpc(reader, resolver):
    with pytest.raises(InvalidMintError):
        await resolver.resolve("not-a-mint")

    assert reader.calls == []


@pytest.mark.parametrize(
    "value",
    ["", "abc", "0OIl" * 11, "1" * 45],
)
def test_parse_mint_rejects_invalid_values(value):
    with pytest.raises(InvalidMintError):
        parse_mint(value)


def test_parse_mint_round_trips_valid_address():
    mint = Pubkey.new_unique()
    assert parse_mint(str(mint)) == mint
