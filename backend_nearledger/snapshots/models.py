"""
Multi-asset balance snapshots for one account at one block.

Responsibilities:
- BalanceSnapshot: NEAR plus fungible tokens, intents (multi-token) balances and
  staking pool balances. Sparse: a missing key means "not queried", a present
  "0" means confirmed zero. NEAR is None when it was not queried.
- AssetFilter: which assets a snapshot query should cover.
- ChangeSet / diff_snapshots: per-asset differences, computed only over assets
  present in both snapshots.

Balances are decimal strings (yoctoNEAR / token base units) and compared as ints.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping


def _freeze(values: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(values or {}))


def _as_int(value: str | int | None) -> int:
    if value is None or value == "":
        return 0
    return int(value)


@dataclass(frozen=True)
class BalanceSnapshot:
    """Immutable, sparse view of an account's holdings at one block."""

    near: str | None = None
    fungible_tokens: Mapping[str, str] = field(default_factory=dict)
    intents_tokens: Mapping[str, str] = field(default_factory=dict)
    staking_pools: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.near is not None:
            object.__setattr__(self, "near", str(self.near))
        object.__setattr__(
            self, "fungible_tokens", _freeze({k: str(v) for k, v in dict(self.fungible_tokens).items()})
        )
        object.__setattr__(
            self, "intents_tokens", _freeze({k: str(v) for k, v in dict(self.intents_tokens).items()})
        )
        object.__setattr__(
            self, "staking_pools", _freeze({k: str(v) for k, v in dict(self.staking_pools).items()})
        )

    @property
    def is_empty(self) -> bool:
        """True when nothing at all was queried."""
        return (
            self.near is None
            and not self.fungible_tokens
            and not self.intents_tokens
            and not self.staking_pools
        )

    def is_zero(self) -> bool:
        """True when every queried value is zero (an unqueried NEAR counts as zero)."""
        if _as_int(self.near) != 0:
            return False
        for group in (self.fungible_tokens, self.intents_tokens, self.staking_pools):
            if any(_as_int(v) != 0 for v in group.values()):
                return False
        return True

    def merge(self, other: BalanceSnapshot) -> BalanceSnapshot:
        """Union of both snapshots; values from other win where both have a key."""
        return BalanceSnapshot(
            near=other.near if other.near is not None else self.near,
            fungible_tokens={**self.fungible_tokens, **other.fungible_tokens},
            intents_tokens={**self.intents_tokens, **other.intents_tokens},
            staking_pools={**self.staking_pools, **other.staking_pools},
        )

    def with_staking_pool(self, pool: str, balance: str) -> BalanceSnapshot:
        return self.merge(BalanceSnapshot(staking_pools={pool: balance}))

    def restrict(self, asset_filter: AssetFilter) -> BalanceSnapshot:
        """Keep only the keys the filter names explicitly (None groups are kept whole)."""

        def pick(values: Mapping[str, str], keys: tuple[str, ...] | None) -> dict[str, str]:
            if keys is None:
                return dict(values)
            return {k: v for k, v in values.items() if k in keys}

        return BalanceSnapshot(
            near=self.near if asset_filter.near else None,
            fungible_tokens=pick(self.fungible_tokens, asset_filter.fungible_tokens),
            intents_tokens=pick(self.intents_tokens, asset_filter.intents_tokens),
            staking_pools=pick(self.staking_pools, asset_filter.staking_pools),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.near is not None:
            out["near"] = self.near
        out["fungibleTokens"] = dict(self.fungible_tokens)
        out["intentsTokens"] = dict(self.intents_tokens)
        out["stakingPools"] = dict(self.staking_pools)
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> BalanceSnapshot:
        if not data:
            return cls()
        near = data.get("near")
        return cls(
            near=str(near) if near is not None else None,
            fungible_tokens=data.get("fungibleTokens") or {},
            intents_tokens=data.get("intentsTokens") or {},
            staking_pools=data.get("stakingPools") or {},
        )


@dataclass(frozen=True)
class AssetFilter:
    """
    Asset scope for a snapshot query.

    fungible_tokens=None means the configured default token list;
    intents_tokens=None means discover held intents tokens at query time.
    Empty tuples mean "query none of this class".
    """

    near: bool = True
    fungible_tokens: tuple[str, ...] | None = None
    intents_tokens: tuple[str, ...] | None = None
    staking_pools: tuple[str, ...] = ()

    @classmethod
    def only(
        cls,
        *,
        near: bool = False,
        fungible_tokens: Iterable[str] = (),
        intents_tokens: Iterable[str] = (),
        staking_pools: Iterable[str] = (),
    ) -> AssetFilter:
        """Explicit filter: nothing defaulted, nothing discovered."""
        return cls(
            near=near,
            fungible_tokens=tuple(sorted(set(fungible_tokens))),
            intents_tokens=tuple(sorted(set(intents_tokens))),
            staking_pools=tuple(sorted(set(staking_pools))),
        )

    @classmethod
    def staking(cls, pools: Iterable[str]) -> AssetFilter:
        return cls.only(staking_pools=pools)

    @classmethod
    def from_snapshot(cls, snapshot: BalanceSnapshot) -> AssetFilter:
        """Exactly the assets present in a snapshot."""
        return cls.only(
            near=snapshot.near is not None,
            fungible_tokens=snapshot.fungible_tokens.keys(),
            intents_tokens=snapshot.intents_tokens.keys(),
            staking_pools=snapshot.staking_pools.keys(),
        )

    @property
    def is_empty(self) -> bool:
        return (
            not self.near
            and self.fungible_tokens is not None
            and not self.fungible_tokens
            and self.intents_tokens is not None
            and not self.intents_tokens
            and not self.staking_pools
        )

    def plus(self, other: AssetFilter) -> AssetFilter:
        """
        Union of two explicit filters. A None group on either side stays None
        (defaults / discovery), so explicit names are only added to explicit groups.
        """

        def join(a: tuple[str, ...] | None, b: tuple[str, ...] | None) -> tuple[str, ...] | None:
            if a is None or b is None:
                return None
            return tuple(sorted(set(a) | set(b)))

        return AssetFilter(
            near=self.near or other.near,
            fungible_tokens=join(self.fungible_tokens, other.fungible_tokens),
            intents_tokens=join(self.intents_tokens, other.intents_tokens),
            staking_pools=tuple(sorted(set(self.staking_pools) | set(other.staking_pools))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "near": self.near,
            "fungibleTokens": list(self.fungible_tokens) if self.fungible_tokens is not None else None,
            "intentsTokens": list(self.intents_tokens) if self.intents_tokens is not None else None,
            "stakingPools": list(self.staking_pools),
        }


@dataclass(frozen=True)
class AssetChange:
    """Start and end balance of one asset across a range, with the signed diff."""

    start: str
    end: str
    diff: str

    @classmethod
    def between(cls, start: str, end: str) -> AssetChange:
        return cls(start=start, end=end, diff=str(_as_int(end) - _as_int(start)))

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end, "diff": self.diff}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AssetChange:
        start = str(data.get("start", "0"))
        end = str(data.get("end", "0"))
        diff = data.get("diff")
        return cls(start=start, end=end, diff=str(diff) if diff is not None else str(_as_int(end) - _as_int(start)))


@dataclass(frozen=True)
class ChangeSet:
    """Diff of two snapshots. Only assets present in both operands can appear."""

    near_changed: bool = False
    near_diff: str | None = None
    tokens_changed: Mapping[str, AssetChange] = field(default_factory=dict)
    intents_changed: Mapping[str, AssetChange] = field(default_factory=dict)
    staking_changed: Mapping[str, AssetChange] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tokens_changed", _freeze(self.tokens_changed))
        object.__setattr__(self, "intents_changed", _freeze(self.intents_changed))
        object.__setattr__(self, "staking_changed", _freeze(self.staking_changed))

    @property
    def has_changes(self) -> bool:
        return (
            self.near_changed
            or bool(self.tokens_changed)
            or bool(self.intents_changed)
            or bool(self.staking_changed)
        )

    def changed_filter(self) -> AssetFilter:
        """Filter naming exactly the assets that changed."""
        return AssetFilter.only(
            near=self.near_changed,
            fungible_tokens=self.tokens_changed.keys(),
            intents_tokens=self.intents_changed.keys(),
            staking_pools=self.staking_changed.keys(),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"nearChanged": self.near_changed}
        if self.near_diff is not None:
            out["nearDiff"] = self.near_diff
        out["tokensChanged"] = {k: v.to_dict() for k, v in self.tokens_changed.items()}
        out["intentsChanged"] = {k: v.to_dict() for k, v in self.intents_changed.items()}
        if self.staking_changed:
            out["stakingChanged"] = {k: v.to_dict() for k, v in self.staking_changed.items()}
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ChangeSet:
        if not data:
            return cls()

        def group(key: str) -> dict[str, AssetChange]:
            return {k: AssetChange.from_dict(v) for k, v in (data.get(key) or {}).items()}

        near_diff = data.get("nearDiff")
        return cls(
            near_changed=bool(data.get("nearChanged")),
            near_diff=str(near_diff) if near_diff is not None else None,
            tokens_changed=group("tokensChanged"),
            intents_changed=group("intentsChanged"),
            staking_changed=group("stakingChanged"),
        )


def _diff_group(start: Mapping[str, str], end: Mapping[str, str]) -> dict[str, AssetChange]:
    changed: dict[str, AssetChange] = {}
    for key in start.keys() & end.keys():
        if _as_int(start[key]) != _as_int(end[key]):
            changed[key] = AssetChange.between(start[key], end[key])
    return dict(sorted(changed.items()))


def diff_snapshots(start: BalanceSnapshot, end: BalanceSnapshot) -> ChangeSet:
    """Diff two snapshots over the assets present in both; absent keys never count as change."""
    near_changed = False
    near_diff: str | None = None
    if start.near is not None and end.near is not None:
        delta = _as_int(end.near) - _as_int(start.near)
        near_changed = delta != 0
        if near_changed:
            near_diff = str(delta)
    return ChangeSet(
        near_changed=near_changed,
        near_diff=near_diff,
        tokens_changed=_diff_group(start.fungible_tokens, end.fungible_tokens),
        intents_changed=_diff_group(start.intents_tokens, end.intents_tokens),
        staking_changed=_diff_group(start.staking_pools, end.staking_pools),
    )
