"""Watched pools for feeds that are addressed by pool rather than by token."""

from pathlib import Path

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator


class PoolEntry(BaseModel):
    pool_address: str
    token_address: str
    symbol: str = ""
    name: str = ""

    @field_validator("pool_address", "token_address")
    @classmethod
    def _strip(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("address must not be empty")
        return cleaned


class Watchlist(BaseModel):
    pools: list[PoolEntry] = Field(default_factory=list)

    def pool_tokens(self) -> dict[str, str]:
        """Lower-cased pool address -> lower-cased token address."""
        return {pool.pool_address.lower(): pool.token_address.lower() for pool in self.pools}

    def pool_addresses(self) -> list[str]:
        return [pool.pool_address for pool in self.pools]

    def token_label(self, address: str) -> str:
        for pool in self.pools:
            if pool.token_address.lower() == address.lower():
                return f"{pool.symbol} ({pool.name})" if pool.name else pool.symbol
        return address


# Four.meme pools on BSC, found via DexScreener.
DEFAULT_POOLS = [
    PoolEntry(
        pool_address="0x66f289De31EEF70d52186729d2637Ac978CFC56B",
        token_address="0x924fa68a0fc644485b8df8abfa0a41c2e7744444",
        symbol="币安人生",
        name="BinanceLife",
    ),
    PoolEntry(
        pool_address="0xc33bACFf9141Da689875e6381c1932348aB4c5CB",
        token_address="0x82ec31d69b3c289e541b50e30681fd1acad24444",
        symbol="哈基米",
        name="Hajimi",
    ),
    PoolEntry(
        pool_address="0x28a79b44AA17cb82f2bD8d0E39c8f575B8eD28A7",
        token_address="0x501797b4733a055ac37a12b0f3101212fd6f4444",
        symbol="HEYTEA",
        name="HEYTEA",
    ),
    PoolEntry(
        pool_address="0x87659d5Be1D7A54EB4F543Fa7647a53C7A5a303b",
        token_address="0x730e9b7091258cdf578136ec8394daea2db84444",
        symbol="马到成功",
        name="Success",
    ),
    PoolEntry(
        pool_address="0x6354AA3963eFe7C68E35ea801Fd5D010b42e9901",
        token_address="0x444452418bd7719f4447a92c36c82ea7442a4444",
        symbol="修仙人生",
        name="修仙人生",
    ),
]


def load_watchlist(path: str = "pools.yaml") -> Watchlist:
    p = Path(path)
    if not p.exists():
        return Watchlist(pools=list(DEFAULT_POOLS))
    return Watchlist.model_validate(yaml.safe_load(p.read_text()) or {})


def save_watchlist(watchlist: Watchlist, path: str = "pools.yaml") -> None:
    payload = watchlist.model_dump()
    Path(path).write_text(yaml.safe_dump(payload, sort_keys=False, allow_unicode=True))
