from datetime import date
from decimal import Decimal

import pytest

from finflow.core.exceptions import ValidationError
from finflow.schemas import TransactionFilter
from conftest import BASE_URL, png


@pytest.fixture
def fixture_rows(user, income_category, expense_category, make_transaction):
    return [
        make_transaction(user, income_category, 10, on=date(2024, 5, 1), note="refund"),
        make_transaction(user, expense_category, 75, on=date(2024, 5, 2), note="weekly shop"),
        make_transaction(user, expense_category, 150, on=date(2024, 5, 3), note="party supplies"),
        make_transaction(user, expense_category, 300, on=date(2024, 5, 4), note="new shoes"),
    ]


def _amounts(page):
    return [item.amount for item in page.items]


def test_amount_and_type_scenario(queries, fixture_rows, user):
    filters = TransactionFilter(min_amount=Decimal("50"), max_amount=Decimal("200"), type="Expense", sort_by="amount", order="asc")
    page = queries.list(user.id, filters, limit=20, offset=0, base_url=BASE_URL)

    assert _amounts(page) == [Decimal("75"), Decimal("150")]
    assert page.total == 2
    assert page.has_more is False


def test_limit_zero_returns_no_items_but_total(queries, fixture_rows, user):
    page = queries.list(user.id, TransactionFilter(), limit=0, offset=0, base_url=BASE_URL)

    assert page.items == []
    assert page.total == 4
    assert page.has_more is True


def test_pages_concatenate_to_full_result(queries, fixture_rows, user, expense_category, make_transaction):
    # Ties on the sort column must not duplicate or drop rows across pages
    for _ in range(3):
        make_transaction(user, expense_category, 75, on=date(2024, 5, 2))
    filters = TransactionFilter(sort_by="amount", order="desc")

    full = queries.list(user.id, filters, limit=100, offset=0, base_url=BASE_URL)
    collected = []
    offset = 0
    while True:
        page = queries.list(user.id, filters, limit=2, offset=offset, base_url=BASE_URL)
        collected.extend(item.id for item in page.items)
        assert page.total == full.total
        if not page.has_more:
            break
        offset += 2

    assert collected == [item.id for item in full.items]
    assert len(set(collected)) == full.total == 7


def test_other_users_rows_are_never_listed(queries, fixture_rows, user, other_user, expense_category, make_transaction):
    make_transaction(other_user, expense_category, 99, note="not yours")

    page = queries.list(user.id, TransactionFilter(), limit=20, offset=0, base_url=BASE_URL)
    assert page.total == 4
    assert all(item.note != "not yours" for item in page.items)

    theirs = queries.list(other_user.id, TransactionFilter(), limit=20, offset=0, base_url=BASE_URL)
    assert theirs.total == 1


def test_default_sort_is_newest_first(queries, fixture_rows, user):
    page = queries.list(user.id, TransactionFilter(), limit=20, offset=0, base_url=BASE_URL)
    dates = [item.transaction_date for item in page.items]
    assert dates == sorted(dates, reverse=True)


def test_date_range_is_inclusive(queries, fixture_rows, user):
    filters = TransactionFilter(start_date=date(2024, 5, 2), end_date=date(2024, 5, 3))
    page = queries.list(user.id, filters, limit=20, offset=0, base_url=BASE_URL)
    assert sorted(_amounts(page)) == [Decimal("75"), Decimal("150")]


def test_search_matches_note_or_category_name(queries, fixture_rows, user):
    by_note = queries.list(user.id, TransactionFilter(search="shoes"), limit=20, offset=0, base_url=BASE_URL)
    assert _amounts(by_note) == [Decimal("300")]

    by_category = queries.list(user.id, TransactionFilter(search="salary"), limit=20, offset=0, base_url=BASE_URL)
    assert _amounts(by_category) == [Decimal("10")]


def test_search_treats_wildcards_literally(queries, fixture_rows, user, expense_category, make_transaction):
    make_transaction(user, expense_category, 5, note="50% off")

    page = queries.list(user.id, TransactionFilter(search="%"), limit=20, offset=0, base_url=BASE_URL)
    assert [item.note for item in page.items] == ["50% off"]


def test_category_filter(queries, fixture_rows, user, income_category):
    only_income = TransactionFilter(category_ids=[income_category.id])
    assert queries.list(user.id, only_income, limit=20, offset=0, base_url=BASE_URL).total == 1

    unrestricted = TransactionFilter(category_ids=[])
    assert queries.list(user.id, unrestricted, limit=20, offset=0, base_url=BASE_URL).total == 4


def test_attachments_are_aggregated_per_transaction(db_session, queries, store, fixture_rows, user):
    refund, shop, _, _ = fixture_rows
    store.persist(shop.id, png(b"first"), [])
    store.persist(shop.id, png(b"second", "second.png"), [])
    db_session.commit()

    page = queries.list(user.id, TransactionFilter(), limit=20, offset=0, base_url=BASE_URL)

    assert page.total == 4
    assert len(page.items) == 4
    by_id = {item.id: item for item in page.items}
    assert by_id[refund.id].attachments == []
    shop_attachments = by_id[shop.id].attachments
    assert sorted(a.file_name for a in shop_attachments) == ["receipt.png", "second.png"]
    for attachment in shop_attachments:
        assert attachment.url == f"{BASE_URL}/{attachment.file_path}"
        assert attachment.file_path.startswith("uploads/transactions/")


def test_attachments_do_not_inflate_pagination(db_session, queries, store, fixture_rows, user):
    newest = fixture_rows[-1]
    for i in range(3):
        store.persist(newest.id, png(f"file-{i}".encode()), [])
    db_session.commit()

    page = queries.list(user.id, TransactionFilter(), limit=2, offset=0, base_url=BASE_URL)

    assert len(page.items) == 2
    assert page.items[0].id == newest.id
    assert len(page.items[0].attachments) == 3
    assert page.total == 4


def test_enriched_fields(queries, fixture_rows, user, income_category):
    page = queries.list(user.id, TransactionFilter(type="Income"), limit=20, offset=0, base_url=BASE_URL)
    item = page.items[0]

    assert item.category_id == income_category.id
    assert item.category_name == "Salary"
    assert item.category_type == "Income"
    assert item.note == "refund"
    assert item.transaction_date == date(2024, 5, 1)


@pytest.mark.parametrize("limit,offset", [(-1, 0), (10, -5)])
def test_negative_pagination_is_rejected(queries, user, limit, offset):
    with pytest.raises(ValidationError):
        queries.list(user.id, TransactionFilter(), limit=limit, offset=offset, base_url=BASE_URL)
