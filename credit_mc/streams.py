"""Coordinate-addressed random streams.

Every idiosyncratic draw in a simulation is addressed by the work-unit
coordinate ``(m, k, j)``: scenario ``m``, draw ``k`` and obligor ``j``. Each
obligor owns an independent counter-based Philox stream whose key is derived
from the global seed and the obligor's *id*; position ``mk = m * K + k`` of
that stream holds the draw for ``(m, k)``. Reaching a position sets the Philox
counter directly, so a draw depends only on ``(seed, obligor id, m, k)`` and
never on which other obligors, rows or threads take part in the call.
"""

from typing import Hashable, Sequence, Tuple
import numpy as np
from scipy.special import ndtri

from .exceptions import ConfigurationError, OutOfRangeError

# 64-bit outputs per Philox4x64 counter block
_BLOCK = 4

# Smallest uniform handed to the inverse normal CDF; keeps normals finite.
_MIN_UNIFORM = 2.0 ** -54

_INT_TAG = 0
_STR_TAG = 1


def stream_entropy(obligor_id: Hashable) -> Tuple[int, ...]:
    """Map an obligor id to the integer words identifying its stream.

    Integer and string ids carry different type tags, so ``97`` and ``"a"``
    never share a stream. String ids also carry their UTF-8 byte length, since
    the little-endian integer alone drops trailing NUL bytes.
    """
    if isinstance(obligor_id, (int, np.integer)) and not isinstance(obligor_id, bool):
        if obligor_id < 0:
            raise ConfigurationError(f"Integer obligor id must be non-negative, got {obligor_id}")
        return _INT_TAG, int(obligor_id)
    if isinstance(obligor_id, str):
        raw = obligor_id.encode("utf-8")
        return _STR_TAG, len(raw), int.from_bytes(raw, "little")
    raise ConfigurationError(
        f"Obligor id must be an int or str, got {type(obligor_id).__name__}"
    )


def derive_key(seed: int, obligor_id: Hashable) -> np.ndarray:
    """Philox key for one obligor's stream."""
    seq = np.random.SeedSequence([seed, *stream_entropy(obligor_id)])
    return seq.generate_state(2, dtype=np.uint64)


def _uniform_run(key: np.ndarray, start: int, count: int) -> np.ndarray:
    """Uniforms at stream positions ``start .. start + count - 1``.

    Position ``p`` is output ``p % 4`` of Philox block ``p // 4 + 1`` (Philox
    increments its counter before producing a block).
    """
    block, offset = divmod(start, _BLOCK)
    generator = np.random.Generator(np.random.Philox(counter=block, key=key))
    return generator.random(offset + count)[offset:]


class RandomStreams:
    """Independent, reproducible random streams for a simulation domain.

    Args:
        seed: Global non-negative seed
        num_scenarios: Number of scenarios M in the domain
        draws_per_scenario: Idiosyncratic draws per scenario K
        obligor_ids: Ids of the obligors in column order; column ``j`` of the
            domain uses the stream of ``obligor_ids[j]``
    """

    def __init__(self, seed: int, num_scenarios: int, draws_per_scenario: int,
                 obligor_ids: Sequence[Hashable]):
        if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)) or seed < 0:
            raise ConfigurationError(f"Seed must be a non-negative integer, got {seed!r}")
        if num_scenarios < 1 or draws_per_scenario < 1:
            raise ConfigurationError(
                f"Domain must be non-empty, got {num_scenarios} scenarios x "
                f"{draws_per_scenario} draws"
            )
        self.seed = int(seed)
        self.num_scenarios = int(num_scenarios)
        self.draws_per_scenario = int(draws_per_scenario)
        self.obligor_ids = list(obligor_ids)
        self._keys = [derive_key(self.seed, oid) for oid in self.obligor_ids]

    @property
    def num_obligors(self) -> int:
        return len(self.obligor_ids)

    @property
    def size(self) -> int:
        """Number of scenario-draw pairs in the domain."""
        return self.num_scenarios * self.draws_per_scenario

    def linear_index(self, m: int, k: int) -> int:
        """Global scenario-draw index ``m * K + k``."""
        if not 0 <= m < self.num_scenarios:
            raise OutOfRangeError(f"Scenario index {m} outside [0, {self.num_scenarios})")
        if not 0 <= k < self.draws_per_scenario:
            raise OutOfRangeError(f"Draw index {k} outside [0, {self.draws_per_scenario})")
        return m * self.draws_per_scenario + k

    def _check_obligor(self, j: int) -> None:
        if not 0 <= j < self.num_obligors:
            raise OutOfRangeError(f"Obligor index {j} outside [0, {self.num_obligors})")

    def uniform(self, m: int, k: int, j: int) -> float:
        """Uniform draw in [0, 1) for work unit ``(m, k, j)``."""
        self._check_obligor(j)
        mk = self.linear_index(m, k)
        return float(_uniform_run(self._keys[j], mk, 1)[0])

    def normal(self, m: int, k: int, j: int) -> float:
        """Standard normal draw for work unit ``(m, k, j)``."""
        u = max(self.uniform(m, k, j), _MIN_UNIFORM)
        return float(ndtri(u))

    def uniforms(self, j: int, mk: np.ndarray) -> np.ndarray:
        """Uniform draws of obligor ``j`` at global indices ``mk``.

        ``mk`` may be in any order and contain repeats. Contiguous runs of
        indices are generated in bulk.
        """
        self._check_obligor(j)
        mk = np.asarray(mk, dtype=np.int64)
        if mk.ndim != 1:
            raise OutOfRangeError("Scenario-draw indices must be one-dimensional")
        out = np.empty(mk.shape[0], dtype=np.float64)
        if mk.shape[0] == 0:
            return out
        if mk.min() < 0 or mk.max() >= self.size:
            raise OutOfRangeError(
                f"Scenario-draw indices must lie in [0, {self.size}), "
                f"got range [{mk.min()}, {mk.max()}]"
            )

        key = self._keys[j]
        order = np.argsort(mk, kind="stable")
        sorted_mk = mk[order]
        unique_mk, inverse = np.unique(sorted_mk, return_inverse=True)
        breaks = np.flatnonzero(np.diff(unique_mk) != 1) + 1
        values = np.empty(unique_mk.shape[0], dtype=np.float64)
        for lo, hi in zip(np.r_[0, breaks], np.r_[breaks, unique_mk.shape[0]]):
            values[lo:hi] = _uniform_run(key, int(unique_mk[lo]), int(hi - lo))
        out[order] = values[inverse]
        return out

    def normals(self, j: int, mk: np.ndarray) -> np.ndarray:
        """Standard normal draws of obligor ``j`` at global indices ``mk``."""
        u = self.uniforms(j, mk)
        np.maximum(u, _MIN_UNIFORM, out=u)
        return ndtri(u)
