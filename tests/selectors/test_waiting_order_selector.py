"""WaitingOrderSelector: the pool of unsettled order charges."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.dtos import Pagination, Side, SortSpec, WaitingOrderFilter
from settlement_kernel.exceptions import InvalidPeriodError, ValidationError
from settlement_kernel.selectors import WaitingOrderSelector


@pytest.fixture
def selector(session) -> WaitingOrderSelector:
    return WaitingOrderSelector(session)


@pytest.fixture
def pool(make_charge, shipper, carrier):
    """Three sales charges for the shipper, one purchase charge for the carrier."""
    return {
        "jan": make_charge(shipper, "100", service_date=date(2024, 1, 10), order_id="ORD-JAN"),
        "feb": make_charge(shipper, "200", service_date=date(2024, 2, 10), order_id="ORD-FEB"),
        "mar": make_charge(shipper, "300", service_date=date(2024, 3, 10), order_id="ORD-MAR"),
        "carrier": make_charge(carrier, "80", side=Side.PURCHASE, order_id="ORD-JAN"),
    }


def test_lists_only_the_requested_side(selector, pool):
    page = selector.list_waiting_orders(Side.SALES)
    assert page.total == 3
    assert {w.side for w in page.items} == {Side.SALES}

    purchase = selector.list_waiting_orders("purchase")
    assert [w.order_charge_id for w in purchase.items] == [pool["carrier"].id]
    assert purchase.items[0].company_name == "Daesung Transport"


def test_bundled_charges_leave_the_pool(selector, pool, builder, shipper, manager, items_for):
    builder.create_bundle(
        side=Side.SALES,
        counterparty_id=shipper.id,
        manager_id=manager.id,
        period_type="departure",
        period_from=None,
        period_to=None,
        items=items_for(pool["jan"]),
    )
    page = selector.list_waiting_orders(Side.SALES)
    assert {w.order_charge_id for w in page.items} == {pool["feb"].id, pool["mar"].id}


def test_service_date_range(selector, pool):
    page = selector.list_waiting_orders(
        Side.SALES,
        WaitingOrderFilter(start_date=date(2024, 2, 1), end_date=date(2024, 3, 10)),
    )
    assert {w.order_id for w in page.items} == {"ORD-FEB", "ORD-MAR"}


def test_inverted_range(selector, pool):
    with pytest.raises(InvalidPeriodError):
        selector.list_waiting_orders(
            Side.SALES, WaitingOrderFilter(start_date=date(2024, 3, 1), end_date=date(2024, 1, 1))
        )


def test_filters_by_company(selector, pool, shipper, make_company, make_charge):
    other = make_company("Other Shipper")
    make_charge(other, "10")

    by_id = selector.list_waiting_orders(Side.SALES, WaitingOrderFilter(company_id=shipper.id))
    assert by_id.total == 3

    by_name = selector.list_waiting_orders(Side.SALES, WaitingOrderFilter(company_name="hanbit"))
    assert by_name.total == 3

    by_number = selector.list_waiting_orders(
        Side.SALES, WaitingOrderFilter(business_number="123-45-67890")
    )
    assert by_number.total == 3


def test_search_matches_order_id(selector, pool):
    page = selector.list_waiting_orders(Side.SALES, WaitingOrderFilter(search="ord-fe"))
    assert [w.order_id for w in page.items] == ["ORD-FEB"]


def test_search_treats_wildcards_literally(selector, pool):
    page = selector.list_waiting_orders(Side.SALES, WaitingOrderFilter(search="%"))
    assert page.total == 0


def test_sorting_and_paging(selector, pool):
    first = selector.list_waiting_orders(
        Side.SALES, pagination=Pagination(page=1, page_size=2), sort=SortSpec("amount", "asc")
    )
    second = selector.list_waiting_orders(
        Side.SALES, pagination=Pagination(page=2, page_size=2), sort=SortSpec("amount", "asc")
    )
    assert [w.amount for w in first.items] == [Decimal("100.00"), Decimal("200.00")]
    assert [w.amount for w in second.items] == [Decimal("300.00")]
    assert first.total == second.total == 3
    assert first.total_pages == 2


@pytest.mark.parametrize(
    "pagination,sort",
    [
        (Pagination(page=0, page_size=10), SortSpec()),
        (Pagination(page=1, page_size=0), SortSpec()),
        (Pagination(page=1, page_size=101), SortSpec()),
        (Pagination(), SortSpec("bundle_id", "asc")),
        (Pagination(), SortSpec("amount", "sideways")),
    ],
)
def test_bad_listing_parameters(selector, pool, pagination, sort):
    with pytest.raises(ValidationError):
        selector.list_waiting_orders(Side.SALES, pagination=pagination, sort=sort)


class TestSummary:
    def test_groups_by_counterparty(self, selector, pool, make_company, make_charge):
        other = make_company("Alpha Freight")
        extra = make_charge(other, "45.50")

        rows = selector.summarize_waiting_orders(
            Side.SALES, [pool["jan"].id, pool["feb"].id, extra.id]
        )

        assert [r.company_name for r in rows] == ["Alpha Freight", "Hanbit Logistics"]
        assert rows[0].order_count == 1
        assert rows[0].total_amount == Decimal("45.50")
        assert rows[1].order_count == 2
        assert rows[1].total_amount == Decimal("300.00")

    def test_ignores_ids_outside_the_pool(self, selector, pool):
        rows = selector.summarize_waiting_orders(
            Side.SALES, [pool["jan"].id, pool["carrier"].id, uuid4()]
        )
        assert len(rows) == 1
        assert rows[0].order_count == 1

    def test_requires_ids(self, selector):
        with pytest.raises(ValidationError):
            selector.summarize_waiting_orders(Side.SALES, [])
