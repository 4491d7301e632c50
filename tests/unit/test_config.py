"""
Unit tests for the injected scoring configuration.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError

from personalization.config import (
    CompatibilityConfig,
    ContentConfig,
    RecommendationConfig,
    SegmentationConfig,
)


class TestImmutability:
    """A shared config instance cannot be changed after construction."""

    def test_weight_tables_are_read_only(self):
        config = RecommendationConfig()

        with pytest.raises(TypeError):
            config.content.weights["brand"] = 0
        with pytest.raises(TypeError):
            config.interaction_weights["view"] = 100

        assert config.content.weights["brand"] == 30
        assert config.interaction_weights["view"] == 1

    def test_score_ranges_are_read_only(self):
        config = SegmentationConfig()

        with pytest.raises(TypeError):
            config.score_ranges["loyal"] = (0, 100)

    def test_overridden_weights_are_read_only_too(self):
        weights = {"compatibility": 70, "price": 10, "brand": 10, "popularity": 10}
        config = CompatibilityConfig(weights=weights)

        weights["compatibility"] = 0

        assert config.weights["compatibility"] == 70
        with pytest.raises(TypeError):
            config.weights["price"] = 99

    def test_attributes_are_frozen(self):
        config = ContentConfig()

        with pytest.raises(PydanticValidationError):
            config.removal_threshold = 10

    def test_override_replaces_default_table(self):
        assert dict(ContentConfig(weights={"brand": 1}).weights) == {"brand": 1}
