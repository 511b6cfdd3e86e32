"""CLI tests: argument parsing and the commands that need no network."""

import pytest

from factories import new_mint
from nftcache.cli.__main__ import async_main, parse_args
from nftcache.cli.load_collection import read_mints_file


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Point the CLI at a temp database and cache directory."""
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    # Keep structlog's default config; cached loggers would outlive capsys
    monkeypatch.setattr("nftcache.cli.common.configure_logging", lambda settings: None)
    return tmp_path


def test_parse_load_collection_args(tmp_path):
    args = parse_args(["load-collection", "COLL", "--mints-file", str(tmp_path / "m.txt"), "--refresh"])

    assert args.command == "load-collection"
    assert args.collection == "COLL"
    assert args.refresh is True
    assert args.mints_file == tmp_path / "m.txt"


def test_parse_resolve_args():
    args = parse_args(["resolve", "MINT", "--variant", "thumbnail", "-v"])

    assert args.mint == "MINT"
    assert args.variant == "thumbnail"
    assert args.refresh is False
    assert args.verbose is True


def test_parse_requires_command():
    with pytest.raises(SystemExit):
        parse_args([])


def test_read_mints_file_skips_blanks_and_comments(tmp_path):
    path = tmp_path / "mints.txt"
    path.write_text("# drop 1\nAAA\n\n  BBB  \n", encoding="utf-8")

    assert read_mints_file(path) == ["AAA", "BBB"]


@pytest.mark.asyncio
async def test_invalidate_unknown_mint(cli_env, capsys):
    mint = new_mint()

    exit_code = await async_main(["invalidate", mint])

    assert exit_code == 0
    assert f"{mint}: no record" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_load_collection_from_empty_mints_file(cli_env, capsys):
    mints_file = cli_env / "mints.txt"
    mints_file.write_text("", encoding="utf-8")

    exit_code = await async_main(["load-collection", "empty", "--mints-file", str(mints_file)])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "Collection Load Summary" in out
    assert "Succeeded: 0" in out


@pytest.mark.asyncio
async def test_load_collection_missing_mints_file(cli_env, capsys):
    exit_code = await async_main(
        ["load-collection", "c", "--mints-file", str(cli_env / "missing.txt")]
    )

    assert exit_code == 1
    assert "cannot read" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_load_collection_summary_labels_skipped(cli_env, capsys):
    mints_file = cli_env / "mints.txt"
    mints_file.write_text("", encoding="utf-8")

    await async_main(["load-collection", "empty", "--mints-file", str(mints_file)])

    assert "Skipped (ready or failed, not due): 0" in capsys.readouterr().out
