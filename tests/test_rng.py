"""Tests for spatepi.rng — seeded RNG hierarchy and checkpointing."""

import numpy as np
import pytest

from spatepi.rng import (
    STREAM_NAMES,
    create_rng_hierarchy,
    get_stream,
    restore_rng_state,
    rng_state_snapshot,
)


class TestCreateRngHierarchy:
    def test_standard_streams(self):
        rngs = create_rng_hierarchy(42)
        assert list(rngs) == list(STREAM_NAMES)

    def test_extra_streams_appended(self):
        rngs = create_rng_hierarchy(42, extra_streams=['bootstrap'])
        assert list(rngs)[-1] == 'bootstrap'
        assert len(rngs) == len(STREAM_NAMES) + 1

    def test_extra_streams_do_not_shift_standard_streams(self):
        plain = create_rng_hierarchy(42)
        extended = create_rng_hierarchy(42, extra_streams=['bootstrap'])
        for name in STREAM_NAMES:
            np.testing.assert_array_equal(plain[name].random(5),
                                          extended[name].random(5))

    def test_generators_are_independent(self):
        rngs = create_rng_hierarchy(42)
        vals = {name: rng.random() for name, rng in rngs.items()}
        assert len(set(vals.values())) == len(vals)

    def test_reproducibility(self):
        rngs1 = create_rng_hierarchy(42)
        rngs2 = create_rng_hierarchy(42)
        for name in rngs1:
            np.testing.assert_array_equal(rngs1[name].random(100),
                                          rngs2[name].random(100))

    def test_different_seeds_differ(self):
        a = create_rng_hierarchy(42)['geostat'].random(10)
        b = create_rng_hierarchy(43)['geostat'].random(10)
        assert not np.array_equal(a, b)

    def test_negative_seed(self):
        with pytest.raises(ValueError, match="master_seed"):
            create_rng_hierarchy(-1)

    def test_duplicate_stream_name(self):
        with pytest.raises(ValueError, match="Duplicate"):
            create_rng_hierarchy(1, extra_streams=['areal'])


class TestGetStream:
    def test_existing(self):
        rngs = create_rng_hierarchy(42)
        assert get_stream(rngs, 'points') is rngs['points']

    def test_missing_lists_available(self):
        rngs = create_rng_hierarchy(42)
        with pytest.raises(KeyError, match="envelope"):
            get_stream(rngs, 'nope')


class TestCheckpointing:
    def test_snapshot_restore_replays_exactly(self):
        rngs = create_rng_hierarchy(42)
        rngs['permutation'].random(17)
        snap = rng_state_snapshot(rngs)
        first = rngs['permutation'].random(50)
        restore_rng_state(rngs, snap)
        np.testing.assert_array_equal(rngs['permutation'].random(50), first)

    def test_restore_unknown_stream(self):
        rngs = create_rng_hierarchy(42)
        snap = rng_state_snapshot(rngs)
        snap['ghost'] = snap['geostat']
        with pytest.raises(KeyError, match="ghost"):
            restore_rng_state(rngs, snap)
