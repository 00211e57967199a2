"""
Tests for package planning.
"""
import pytest

from wwe_shipping.core.exceptions import (
    InvalidWeightError,
    MissingWeightError,
    NoShippableItemsError,
    TooManyPackagesError,
)
from wwe_shipping.models.order import LineItem, Order
from wwe_shipping.services.package_planner import PackagePlanner, PlannerConfig, box_for_weight


def make_order(address, *items):
    return Order(id=77, shipping_address=address, items=list(items), currency="EUR")


class TestSinglePackage:
    """Test orders that fit under the weight ceiling."""

    @pytest.fixture
    def planner(self, planner_config):
        return PackagePlanner(planner_config)

    def test_two_items_ship_as_one_package(self, planner, us_address):
        """Test 6 KGS + 8 KGS becomes a single 14 KGS large box."""
        order = make_order(
            us_address,
            LineItem(product_ref="A", name="Longbox", quantity=1, weight=6),
            LineItem(product_ref="B", name="Shortbox", quantity=1, weight=8),
        )

        packages = planner.plan(order)

        assert len(packages) == 1
        assert packages[0].weight == 14
        assert packages[0].size_name == "large"
        assert (packages[0].length, packages[0].width, packages[0].height) == (33, 33, 33)
        assert packages[0].reference == "Order 77"

    def test_light_order_gets_small_box(self, planner, sample_order):
        """Test weight tiers pick the smallest box."""
        packages = planner.plan(sample_order)

        assert len(packages) == 1
        assert packages[0].weight == 3.2
        assert packages[0].size_name == "small"
        assert packages[0].height == 4

    def test_minimum_weight_applied(self, planner, us_address):
        """Test a very light order is raised to the minimum package weight."""
        order = make_order(us_address, LineItem(product_ref="S", name="Sticker", quantity=1, weight=0.01))

        packages = planner.plan(order)

        assert packages[0].weight == 0.5

    def test_items_not_needing_shipping_ignored(self, planner, us_address):
        """Test virtual items and zero quantities do not count."""
        order = make_order(
            us_address,
            LineItem(product_ref="DL", name="Digital Comic", quantity=1, weight=None, needs_shipping=False),
            LineItem(product_ref="Z", name="Removed", quantity=0, weight=None),
            LineItem(product_ref="A", name="Comic", quantity=4, weight=0.25),
        )

        packages = planner.plan(order)

        assert packages[0].weight == 1.0

    @pytest.mark.parametrize("weight,expected", [
        (5.0, "small"),
        (5.01, "medium"),
        (12.0, "medium"),
        (12.5, "large"),
    ])
    def test_box_tiers(self, weight, expected):
        """Test box tier boundaries are inclusive."""
        assert box_for_weight(weight)[0] == expected


class TestSplitPackages:
    """Test splitting heavy orders."""

    @pytest.fixture
    def planner(self, planner_config):
        return PackagePlanner(planner_config)

    def test_heavy_order_splits_into_three(self, planner, heavy_order):
        """Test 37 KGS with a 15 KGS ceiling gives three large boxes."""
        packages = planner.plan(heavy_order)

        assert len(packages) == 3
        assert all(p.size_name == "large" for p in packages)
        assert all(p.weight <= 15 for p in packages)
        assert round(sum(p.weight for p in packages), 2) == 37.0
        assert [p.reference for p in packages] == ["Box 1/3", "Box 2/3", "Box 3/3"]

    def test_exact_multiple_of_ceiling(self, planner):
        """Test 30 KGS splits into exactly two full boxes."""
        packages = planner.plan_weight(30.0)

        assert [p.weight for p in packages] == [15.0, 15.0]

    def test_too_many_packages(self, us_address):
        """Test exceeding the package limit raises."""
        planner = PackagePlanner(PlannerConfig(max_package_weight=15.0, min_package_weight=0.5, max_packages=2))
        order = make_order(us_address, LineItem(product_ref="X", name="Anvil", quantity=1, weight=46))

        with pytest.raises(TooManyPackagesError) as exc_info:
            planner.plan(order)

        assert exc_info.value.details["package_count"] == 4
        assert exc_info.value.details["max_packages"] == 2


class TestPlanningErrors:
    """Test weight validation."""

    @pytest.fixture
    def planner(self, planner_config):
        return PackagePlanner(planner_config)

    def test_no_shippable_items(self, planner, us_address):
        order = make_order(
            us_address,
            LineItem(product_ref="DL", name="Gift Card", quantity=1, weight=None, needs_shipping=False),
        )

        with pytest.raises(NoShippableItemsError):
            planner.plan(order)

    def test_missing_weight(self, planner, us_address):
        """Test a shippable item without weight names the product."""
        order = make_order(us_address, LineItem(product_ref="NW-1", name="Mystery Box", quantity=1, weight=None))

        with pytest.raises(MissingWeightError) as exc_info:
            planner.plan(order)

        assert exc_info.value.code == "MISSING_WEIGHT"
        assert exc_info.value.details["product_ref"] == "NW-1"

    @pytest.mark.parametrize("weight", ["heavy", 0, -2, float("nan")])
    def test_invalid_weight(self, planner, us_address, weight):
        order = make_order(us_address, LineItem(product_ref="BAD", name="Broken", quantity=1, weight=weight))

        with pytest.raises(InvalidWeightError):
            planner.plan(order)
