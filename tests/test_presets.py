"""Tests for the preset catalog and downgrade selection."""

import pytest

from paneboard.presets import DOWNGRADE_CHAIN, PRESETS, Preset, find_fallback_preset


class TestCatalog:
    def test_chain_covers_catalog(self):
        assert set(DOWNGRADE_CHAIN) == set(PRESETS)

    def test_chain_is_ordered_largest_first(self):
        sizes = [(PRESETS[name].min_width, PRESETS[name].min_height) for name in DOWNGRADE_CHAIN]
        assert sizes == sorted(sizes, reverse=True)

    def test_development_panes(self):
        assert PRESETS["development"].panes == ("progress", "tasks", "capabilities")
        assert PRESETS["development"].shape == "triple"

    def test_unknown_shape_rejected(self):
        with pytest.raises(ValueError):
            Preset("x", "X", "", ("progress",), "spiral", 10, 10)

    def test_pane_count_must_match_shape(self):
        with pytest.raises(ValueError):
            Preset("x", "X", "", ("progress", "tasks"), "quad", 10, 10)

    def test_fits(self):
        preset = PRESETS["monitoring"]
        assert preset.fits(160, 30)
        assert not preset.fits(159, 30)
        assert not preset.fits(160, 29)

    def test_default_weight(self):
        assert PRESETS["quick"].weight("tasks") == 1.0


class TestFindFallbackPreset:
    def test_largest_fitting_below_requested(self):
        assert find_fallback_preset("debug", 170, 32) == "monitoring"

    def test_skips_presets_that_do_not_fit(self):
        assert find_fallback_preset("full", 130, 26) == "development"

    def test_nothing_fits_selects_quick(self):
        assert find_fallback_preset("full", 20, 5) == "quick"

    def test_requested_outside_chain_considers_whole_chain(self):
        assert find_fallback_preset("custom", 165, 31) == "monitoring"
