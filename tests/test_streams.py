"""Tests for streams.py - coordinate-addressed random streams."""

import pytest
import numpy as np
from scipy.special import ndtri

from credit_mc import RandomStreams, OutOfRangeError, ConfigurationError
from credit_mc.streams import derive_key, stream_entropy


@pytest.fixture
def streams():
    """Streams over 50 scenarios x 4 draws for three obligors."""
    return RandomStreams(seed=123, num_scenarios=50, draws_per_scenario=4,
                         obligor_ids=["A", "B", 7])


class TestStreamEntropy:
    """Tests for the obligor id to stream mapping."""

    def test_int_and_str_ids_are_tagged(self):
        """Test that an int id and a str id with the same bytes differ."""
        assert stream_entropy(97) != stream_entropy("a")

    def test_numpy_integer_id(self):
        """Test that numpy integers map like Python ints."""
        assert stream_entropy(np.int64(5)) == stream_entropy(5)

    def test_invalid_ids(self):
        """Test rejected id types."""
        with pytest.raises(ConfigurationError):
            stream_entropy(1.5)
        with pytest.raises(ConfigurationError):
            stream_entropy(-1)
        with pytest.raises(ConfigurationError):
            stream_entropy(True)

    def test_trailing_nul_ids_differ(self):
        """Test that string ids differing only by trailing NUL bytes get distinct streams."""
        assert stream_entropy("a") != stream_entropy("a\x00")
        assert stream_entropy("a") == (1, 1, 97)
        assert not np.array_equal(derive_key(3, "a"), derive_key(3, "a\x00"))
        streams = RandomStreams(3, 25, 4, ["a", "a\x00"])
        mk = np.arange(100)
        assert not np.array_equal(streams.uniforms(0, mk), streams.uniforms(1, mk))

    def test_key_depends_on_seed_and_id(self):
        """Test that keys differ across seeds and ids."""
        base = derive_key(1, "A")
        assert base.dtype == np.uint64 and base.shape == (2,)
        np.testing.assert_array_equal(base, derive_key(1, "A"))
        assert not np.array_equal(base, derive_key(2, "A"))
        assert not np.array_equal(base, derive_key(1, "B"))


class TestRandomStreams:
    """Tests for the RandomStreams class."""

    def test_domain_size(self, streams):
        """Test the scenario-draw index space."""
        assert streams.size == 200
        assert streams.num_obligors == 3
        assert streams.linear_index(3, 2) == 14

    def test_uniform_range(self, streams):
        """Test that uniforms lie in [0, 1)."""
        u = streams.uniforms(0, np.arange(streams.size))
        assert np.all(u >= 0) and np.all(u < 1)
        assert 0.4 < u.mean() < 0.6

    def test_scalar_reproducible(self, streams):
        """Test that the same coordinate always yields the same draw."""
        first = streams.uniform(10, 3, 1)
        other = RandomStreams(123, 50, 4, ["A", "B", 7])
        assert other.uniform(10, 3, 1) == first
        assert streams.uniform(10, 3, 1) == first

    def test_draw_independent_of_obligor_position(self, streams):
        """Test that a stream follows the obligor id, not its column."""
        solo = RandomStreams(123, 50, 4, [7])
        shuffled = RandomStreams(123, 50, 4, [7, "B", "A", "Z"])
        for m, k in [(0, 0), (3, 1), (49, 3)]:
            assert solo.normal(m, k, 0) == streams.normal(m, k, 2)
            assert shuffled.normal(m, k, 0) == streams.normal(m, k, 2)
            assert shuffled.normal(m, k, 2) == streams.normal(m, k, 0)

    def test_matches_sequential_philox(self, streams):
        """Test draws against the Philox stream read sequentially from its start."""
        entropies = {"A": [123, 1, 1, 65], "B": [123, 1, 1, 66], 7: [123, 0, 7]}
        for j, oid in enumerate(["A", "B", 7]):
            key = np.random.SeedSequence(entropies[oid]).generate_state(2, dtype=np.uint64)
            sequential = np.random.Generator(np.random.Philox(key=key)).random(streams.size)
            for m, k in [(0, 0), (0, 3), (1, 1), (12, 2), (49, 3)]:
                mk = m * streams.draws_per_scenario + k
                assert streams.uniform(m, k, j) == sequential[mk]
                assert streams.normal(m, k, j) == ndtri(max(sequential[mk], 2.0 ** -54))

    def test_vector_matches_scalar(self, streams):
        """Test that bulk draws equal the scalar accessor at every coordinate."""
        mk = np.arange(streams.size)
        normals = streams.normals(1, mk)
        for idx in [0, 1, 2, 3, 4, 5, 77, 198, 199]:
            m, k = divmod(idx, streams.draws_per_scenario)
            assert normals[idx] == streams.normal(m, k, 1)

    def test_arbitrary_order_and_repeats(self, streams):
        """Test that unsorted, repeated and gapped indices match the full stream."""
        full = streams.uniforms(0, np.arange(streams.size))
        mk = np.array([199, 3, 3, 0, 57, 58, 59, 120, 1])
        np.testing.assert_array_equal(streams.uniforms(0, mk), full[mk])

    def test_every_start_offset(self, streams):
        """Test runs starting inside a Philox block agree with the full stream."""
        full = streams.uniforms(2, np.arange(streams.size))
        for start in range(9):
            run = streams.uniforms(2, np.arange(start, start + 11))
            np.testing.assert_array_equal(run, full[start:start + 11])

    def test_normals_are_inverse_cdf_of_uniforms(self, streams):
        """Test the uniform to normal transform."""
        mk = np.arange(40)
        u = streams.uniforms(0, mk)
        np.testing.assert_array_equal(streams.normals(0, mk), ndtri(u))

    def test_streams_differ_between_obligors(self, streams):
        """Test that obligors get distinct streams."""
        mk = np.arange(100)
        assert not np.array_equal(streams.uniforms(0, mk), streams.uniforms(1, mk))

    def test_seed_changes_draws(self, streams):
        """Test that a different seed yields different draws."""
        other = RandomStreams(124, 50, 4, ["A", "B", 7])
        mk = np.arange(100)
        assert not np.array_equal(streams.uniforms(0, mk), other.uniforms(0, mk))

    def test_empty_index(self, streams):
        """Test requesting no draws."""
        assert streams.normals(0, np.array([], dtype=np.int64)).shape == (0,)

    def test_out_of_range_coordinates(self, streams):
        """Test that coordinates outside the domain raise OutOfRangeError."""
        with pytest.raises(OutOfRangeError):
            streams.uniform(50, 0, 0)
        with pytest.raises(OutOfRangeError):
            streams.uniform(0, 4, 0)
        with pytest.raises(OutOfRangeError):
            streams.normal(0, -1, 0)
        with pytest.raises(OutOfRangeError):
            streams.normal(0, 0, 3)
        with pytest.raises(OutOfRangeError):
            streams.uniforms(0, np.array([0, 200]))
        with pytest.raises(OutOfRangeError):
            streams.uniforms(-1, np.array([0]))

    def test_out_of_range_is_index_error(self, streams):
        """Test that OutOfRangeError is an IndexError."""
        with pytest.raises(IndexError):
            streams.uniform(0, 0, 9)

    def test_invalid_construction(self):
        """Test rejected seeds and empty domains."""
        with pytest.raises(ConfigurationError):
            RandomStreams(-1, 10, 1, ["A"])
        with pytest.raises(ConfigurationError):
            RandomStreams(1, 0, 1, ["A"])
        with pytest.raises(ConfigurationError):
            RandomStreams(1, 10, 1, [2.5])
