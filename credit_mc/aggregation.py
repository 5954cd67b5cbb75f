"""Grouping of per-obligor losses into aggregation columns."""

from enum import Enum
from typing import Callable, Hashable, List, Optional, Union
import numpy as np

from .exceptions import ConfigurationError
from .portfolio import Obligor, Portfolio


class AggregationKey(str, Enum):
    """Built-in aggregation keys.

    OBLIGOR keeps one column per obligor id, RATING and SECTOR sum losses per
    rating or sector, TOTAL collapses everything into a single column.
    """
    OBLIGOR = "obligor"
    RATING = "rating"
    SECTOR = "sector"
    TOTAL = "total"


TOTAL_LABEL = "total"

KeyLike = Union[AggregationKey, str, Callable[[Obligor], Hashable], None]

_KEY_FUNCTIONS = {
    AggregationKey.OBLIGOR: lambda o: o.id,
    AggregationKey.RATING: lambda o: o.rating,
    AggregationKey.SECTOR: lambda o: o.sector,
    AggregationKey.TOTAL: lambda o: TOTAL_LABEL,
}


class Aggregator:
    """Maps obligor columns onto aggregation groups.

    Groups are ordered by first appearance in portfolio order, which makes the
    output column order a deterministic function of the portfolio and key.

    Args:
        group_index: Group position of each obligor column
        groups: Group labels, in output column order
    """

    def __init__(self, group_index: np.ndarray, groups: List[Hashable]):
        self.group_index = np.asarray(group_index, dtype=np.intp)
        self.groups = list(groups)
        self._identity = (
            len(self.groups) == self.group_index.shape[0]
            and np.array_equal(self.group_index, np.arange(len(self.groups)))
        )

    @property
    def num_groups(self) -> int:
        return len(self.groups)

    @classmethod
    def for_portfolio(cls, portfolio: Portfolio, key: KeyLike = None) -> "Aggregator":
        """Build the aggregator for a portfolio and aggregation key.

        Args:
            portfolio: Portfolio whose obligors form the input columns
            key: AggregationKey, its string value, a callable mapping an
                obligor to a hashable label, or None for per-obligor columns

        Raises:
            ConfigurationError: If the key is unknown or maps an obligor to None
        """
        key_fn = _resolve_key(key)
        groups: List[Hashable] = []
        positions = {}
        group_index = np.empty(len(portfolio), dtype=np.intp)
        for j, obligor in enumerate(portfolio):
            label = key_fn(obligor)
            if label is None:
                raise ConfigurationError(
                    f"Aggregation key maps obligor {obligor.id!r} to no group"
                )
            try:
                pos = positions.get(label)
            except TypeError:
                raise ConfigurationError(
                    f"Aggregation label for obligor {obligor.id!r} is not hashable"
                ) from None
            if pos is None:
                pos = positions[label] = len(groups)
                groups.append(label)
            group_index[j] = pos
        return cls(group_index, groups)

    def aggregate(self, obligor_losses: np.ndarray,
                  out: Optional[np.ndarray] = None) -> np.ndarray:
        """Sum obligor loss columns into groups.

        Columns are added in obligor order, one column at a time, so every
        row's result depends only on that row.

        Args:
            obligor_losses: Array of shape (rows, num_obligors)
            out: Optional output array of shape (rows, num_groups)

        Returns:
            Array of shape (rows, num_groups)
        """
        rows, cols = obligor_losses.shape
        if cols != self.group_index.shape[0]:
            raise ConfigurationError(
                f"Expected {self.group_index.shape[0]} obligor columns, got {cols}"
            )
        if out is None:
            out = np.zeros((rows, self.num_groups), dtype=np.float64)
        else:
            out[...] = 0.0
        if self._identity:
            out[...] = obligor_losses
            return out
        for j, g in enumerate(self.group_index):
            out[:, g] += obligor_losses[:, j]
        return out


def _resolve_key(key: KeyLike) -> Callable[[Obligor], Hashable]:
    if key is None:
        return _KEY_FUNCTIONS[AggregationKey.OBLIGOR]
    if isinstance(key, AggregationKey):
        return _KEY_FUNCTIONS[key]
    if isinstance(key, str):
        try:
            return _KEY_FUNCTIONS[AggregationKey(key.lower())]
        except ValueError:
            valid = [k.value for k in AggregationKey]
            raise ConfigurationError(
                f"Unknown aggregation key {key!r}; expected one of {valid} or a callable"
            ) from None
    if callable(key):
        return key
    raise ConfigurationError(f"Malformed aggregation key: {key!r}")
