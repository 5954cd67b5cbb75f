"""Portfolio and obligor data structures for credit risk simulation."""

from dataclasses import dataclass
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Union
import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, NumericDomainError

ObligorId = Union[int, str]


@dataclass(frozen=True)
class Obligor:
    """Represents a single obligor (borrower) in the portfolio.

    Attributes:
        id: Unique identifier. Random streams are addressed by it, so it must
            stay the same whenever the obligor appears in a sub-portfolio.
        pd: Probability of default over the horizon
        lgd: Loss given default (recovery = 1 - lgd)
        ead: Exposure at default
        loading: Sensitivity to the systematic factor, in [-1, 1]
        rating: Credit rating (e.g., 'AAA', 'BB', 'CCC')
        sector: Industry sector classification
    """
    id: ObligorId
    pd: float
    lgd: float
    ead: float
    loading: float = 0.0
    rating: Optional[str] = None
    sector: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.id, bool) or not isinstance(self.id, (int, str)):
            raise ConfigurationError(
                f"Obligor id must be an int or str, got {type(self.id).__name__}"
            )
        if isinstance(self.id, int) and self.id < 0:
            raise ConfigurationError(f"Integer obligor id must be non-negative, got {self.id}")
        if not 0 <= self.pd <= 1:
            raise NumericDomainError(f"PD must be between 0 and 1, got {self.pd}", self.id)
        if not 0 <= self.lgd <= 1:
            raise NumericDomainError(f"LGD must be between 0 and 1, got {self.lgd}", self.id)
        if not self.ead >= 0:
            raise NumericDomainError(f"EAD must be non-negative, got {self.ead}", self.id)
        if not abs(self.loading) <= 1:
            raise NumericDomainError(
                f"Factor loading must be between -1 and 1, got {self.loading}", self.id
            )

    @property
    def expected_loss(self) -> float:
        """Calculate expected loss for this obligor."""
        return self.pd * self.lgd * self.ead

    @property
    def severity(self) -> float:
        """Loss realized on default."""
        return self.ead * self.lgd

    @property
    def idiosyncratic_weight(self) -> float:
        """Calculate the idiosyncratic (firm-specific) weight."""
        return float(np.sqrt(1 - self.loading ** 2))


class Portfolio:
    """Ordered collection of obligors forming a credit portfolio.

    Sub-portfolios returned by :meth:`subset`, :meth:`without` and the filter
    methods share the parent's Obligor objects, so obligor ids (and with them
    the random streams) are preserved.
    """

    def __init__(self, obligors: Iterable[Obligor] = (), name: str = "Portfolio"):
        self.name = name
        self._obligors: Dict[ObligorId, Obligor] = {}
        for obligor in obligors:
            self.add_obligor(obligor)

    def add_obligor(self, obligor: Obligor) -> None:
        """Add an obligor to the portfolio."""
        if obligor.id in self._obligors:
            raise ConfigurationError(f"Obligor {obligor.id!r} already exists in portfolio")
        self._obligors[obligor.id] = obligor

    def get_obligor(self, obligor_id: ObligorId) -> Obligor:
        """Get an obligor by id."""
        if obligor_id not in self._obligors:
            raise KeyError(f"Obligor {obligor_id!r} not found in portfolio")
        return self._obligors[obligor_id]

    @property
    def obligors(self) -> List[Obligor]:
        """Return list of all obligors, in insertion order."""
        return list(self._obligors.values())

    @property
    def obligor_ids(self) -> List[ObligorId]:
        """Return list of all obligor ids, in insertion order."""
        return list(self._obligors.keys())

    def __len__(self) -> int:
        return len(self._obligors)

    def __iter__(self):
        return iter(self._obligors.values())

    def __contains__(self, obligor_id: Hashable) -> bool:
        return obligor_id in self._obligors

    def __repr__(self) -> str:
        return f"Portfolio(name={self.name!r}, obligors={len(self)})"

    @property
    def total_ead(self) -> float:
        """Total exposure at default across all obligors."""
        return sum(o.ead for o in self._obligors.values())

    @property
    def total_expected_loss(self) -> float:
        """Total expected loss across all obligors."""
        return sum(o.expected_loss for o in self._obligors.values())

    @property
    def pds(self) -> np.ndarray:
        return np.array([o.pd for o in self._obligors.values()], dtype=np.float64)

    @property
    def severities(self) -> np.ndarray:
        return np.array([o.severity for o in self._obligors.values()], dtype=np.float64)

    @property
    def loadings(self) -> np.ndarray:
        return np.array([o.loading for o in self._obligors.values()], dtype=np.float64)

    def get_ratings(self) -> set:
        """Get all unique ratings in the portfolio."""
        return {o.rating for o in self._obligors.values() if o.rating is not None}

    def get_sectors(self) -> set:
        """Get all unique sectors in the portfolio."""
        return {o.sector for o in self._obligors.values() if o.sector is not None}

    def filter(self, predicate: Callable[[Obligor], bool],
               name: Optional[str] = None) -> "Portfolio":
        """Return the sub-portfolio of obligors matching ``predicate``."""
        return Portfolio(
            (o for o in self._obligors.values() if predicate(o)),
            name=name or f"{self.name}_filtered"
        )

    def filter_by_rating(self, rating: str) -> "Portfolio":
        """Return the sub-portfolio of obligors with a specific rating."""
        return self.filter(lambda o: o.rating == rating, name=f"{self.name}_{rating}")

    def filter_by_sector(self, sector: str) -> "Portfolio":
        """Return the sub-portfolio of obligors in a specific sector."""
        return self.filter(lambda o: o.sector == sector, name=f"{self.name}_{sector}")

    def subset(self, obligor_ids: Iterable[ObligorId]) -> "Portfolio":
        """Return the sub-portfolio with the given ids, in the given order."""
        return Portfolio(
            (self.get_obligor(i) for i in obligor_ids),
            name=f"{self.name}_subset"
        )

    def without(self, obligor_id: ObligorId) -> "Portfolio":
        """Return the portfolio with one obligor left out."""
        self.get_obligor(obligor_id)
        return self.filter(lambda o: o.id != obligor_id, name=f"{self.name}_ex_{obligor_id}")

    def positions(self, obligor_ids: Iterable[ObligorId]) -> np.ndarray:
        """Column positions of the given ids within this portfolio."""
        index = {oid: pos for pos, oid in enumerate(self._obligors)}
        try:
            return np.array([index[i] for i in obligor_ids], dtype=np.intp)
        except KeyError as exc:
            raise KeyError(f"Obligor {exc.args[0]!r} not found in portfolio") from None

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, name: str = "Portfolio") -> "Portfolio":
        """Build a portfolio from a table with one row per obligor.

        Required columns are ``id``, ``pd``, ``lgd`` and ``ead``; ``loading``,
        ``rating`` and ``sector`` are optional.
        """
        missing = [c for c in ("id", "pd", "lgd", "ead") if c not in frame.columns]
        if missing:
            raise ConfigurationError(f"Portfolio table is missing columns: {missing}")

        obligors = []
        for row in frame.to_dict(orient="records"):
            obligor_id = row["id"]
            if isinstance(obligor_id, np.integer):
                obligor_id = int(obligor_id)
            obligors.append(Obligor(
                id=obligor_id,
                pd=float(row["pd"]),
                lgd=float(row["lgd"]),
                ead=float(row["ead"]),
                loading=float(row.get("loading", 0.0)),
                rating=_optional_label(row.get("rating")),
                sector=_optional_label(row.get("sector"))
            ))
        return cls(obligors, name=name)

    def to_frame(self) -> pd.DataFrame:
        """Tabular view of the portfolio, one row per obligor."""
        return pd.DataFrame([
            {
                'id': o.id,
                'pd': o.pd,
                'lgd': o.lgd,
                'ead': o.ead,
                'loading': o.loading,
                'rating': o.rating,
                'sector': o.sector,
            }
            for o in self._obligors.values()
        ], columns=['id', 'pd', 'lgd', 'ead', 'loading', 'rating', 'sector'])


def _optional_label(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    return str(value)
