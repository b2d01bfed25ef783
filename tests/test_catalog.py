"""Unit tests for the static pairs catalog and revenue adjustments."""

from __future__ import annotations

import pytest

from src.core.catalog import (
    PAIRS,
    Category,
    EntitySpec,
    EntityType,
    get_all_entities,
    get_categories,
    get_entity_by_id,
    get_pair_by_id,
    revenue_multiplier,
    validate_revenue_adjustments,
)
from src.core.errors import ConfigurationError


def test_catalog_has_ten_pairs_with_dense_ids() -> None:
    assert [p.id for p in PAIRS] == list(range(1, 11))
    for pair in PAIRS:
        assert pair.tradfi.type is EntityType.TRADFI
        assert pair.defi.type is EntityType.DEFI


def test_all_entities_are_tradfi_then_defi_per_pair() -> None:
    entities = get_all_entities()

    assert len(entities) == 20
    assert len({e.id for e in entities}) == 20
    assert [e.id for e in entities[:4]] == ["nasdaq", "uniswap", "jpmorgan", "aave"]


def test_categories_are_unique_in_catalog_order() -> None:
    categories = get_categories()

    assert categories[0] == "Exchange"
    assert len(categories) == len(set(categories))
    assert "Perps DEX" in categories


def test_lookups() -> None:
    assert get_pair_by_id(7).defi.id == "gmx"
    assert get_pair_by_id(11) is None
    assert get_entity_by_id("makerdao").coingecko_id == "sky"
    assert get_entity_by_id("curve").defillama_id == "curve-dex"
    assert get_entity_by_id("nope") is None


def test_revenue_multiplier_defaults_to_one() -> None:
    assert revenue_multiplier("gmx") == 0.30
    assert revenue_multiplier("uniswap") == 1.0


@pytest.mark.parametrize(
    "adjustments",
    [
        {"gxm": 0.30},
        {"nasdaq": 0.50},
        {"gmx": 0.0},
        {"gmx": 1.5},
    ],
)
def test_invalid_revenue_adjustments_are_rejected(adjustments) -> None:
    with pytest.raises(ConfigurationError):
        validate_revenue_adjustments(adjustments)


def test_valid_revenue_adjustments_pass_through() -> None:
    assert validate_revenue_adjustments({"gmx": 0.30, "aave": 1.0}) == {"gmx": 0.30, "aave": 1.0}


def test_entity_validation() -> None:
    with pytest.raises(ConfigurationError):
        EntitySpec(id="x", name="X", type=EntityType.TRADFI, category=Category.BANK).validate()
    with pytest.raises(ConfigurationError):
        EntitySpec(id="y", name="Y", type=EntityType.DEFI, category=Category.LENDING).validate()
    EntitySpec(id="z", name="Z", type=EntityType.DEFI, category=Category.LENDING, defillama_id="z").validate()
