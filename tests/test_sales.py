from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from pharmapos.core.errors import (
    InsufficientPayment,
    InsufficientStock,
    NotFound,
    ReversalMismatch,
    ValidationFailed,
)
from pharmapos.models import Notification, NotificationType, Sale, SaleBatchUsage, SaleItem
from pharmapos.services.inventory import usage_total
from pharmapos.services.sales import (
    SaleLine,
    compute_item_deltas,
    confirm_sale,
    delete_sale,
    get_sale,
    list_sales,
    update_sale,
)


def _line(barcode, qty):
    return {"barcode": barcode, "quantity": qty}


def _state(db, *rows):
    for r in rows:
        db.refresh(r)
    return tuple(r.quantity for r in rows)


def test_confirm_and_delete_scenario(db, pharmacy, user, product_x, sent_emails):
    product, b1, b2 = product_x

    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=user.id,
                       items=[_line("X-001", 12)], amount_given="40")

    assert [(a.batch_id, a.qty) for a in res.allocations["X-001"]] == [(b1.id, Decimal("10")), (b2.id, Decimal("2"))]
    assert _state(db, b1, b2, product) == (0, 3, 3)
    assert product.expiry_date == b2.expiry_date
    assert res.sale.total == Decimal("36.00")
    assert res.sale.change_given == Decimal("4.00")
    assert res.items[0].product_name == "Product X"

    delete_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id)

    assert _state(db, b1, b2, product) == (10, 5, 15)
    assert product.expiry_date == b1.expiry_date
    assert db.query(Sale).count() == 0
    assert db.query(SaleItem).count() == 0
    assert db.query(SaleBatchUsage).count() == 0


def test_price_comes_from_product_not_client(db, pharmacy, product_x):
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                       items=[{"barcode": "X-001", "quantity": 2, "price": "0.01"}], amount_given=10)
    assert res.items[0].price == Decimal("3.00")
    assert res.sale.total == Decimal("6.00")


def test_insufficient_stock_rolls_back_whole_sale(db, pharmacy, make_product, make_batch, product_x, today):
    product, b1, b2 = product_x
    other = make_product(barcode="Y-001", price="1.00")
    ob = make_batch(other, 1, today + timedelta(days=30))

    with pytest.raises(InsufficientStock):
        confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                     items=[_line("X-001", 5), _line("Y-001", 2)], amount_given=100)

    assert db.query(Sale).count() == 0
    assert db.query(SaleBatchUsage).count() == 0
    assert _state(db, b1, b2, ob) == (10, 5, 1)


def test_insufficient_payment(db, pharmacy, product_x):
    with pytest.raises(InsufficientPayment) as exc:
        confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                     items=[_line("X-001", 2)], amount_given="5.99")
    assert exc.value.status_code == 400
    assert db.query(Sale).count() == 0


def test_unknown_barcode(db, pharmacy, product_x):
    with pytest.raises(NotFound):
        confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                     items=[_line("NOPE", 1)], amount_given=10)


def test_product_of_another_pharmacy_is_not_found(db, pharmacy, product_x):
    with pytest.raises(NotFound):
        confirm_sale(db, pharmacy_id=pharmacy.id + 1, user_id=None,
                     items=[_line("X-001", 1)], amount_given=10)


def test_empty_cart_rejected(db, pharmacy):
    with pytest.raises(ValidationFailed):
        confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[], amount_given=10)


def test_description_is_trimmed_and_blank_becomes_null(db, pharmacy, product_x):
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                       items=[_line("X-001", 1)], amount_given=10, description="   ")
    assert res.sale.description is None

    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                       items=[_line("X-001", 1)], amount_given=10, description="  paid in euro ")
    assert res.sale.description == "paid in euro"

    with pytest.raises(ValidationFailed):
        confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                     items=[_line("X-001", 1)], amount_given=10, description="x" * 2001)


def test_repeated_lines_aggregate_per_barcode():
    old = [SaleItem(product_barcode="A", quantity=Decimal("2")), SaleItem(product_barcode="A", quantity=Decimal("1")),
           SaleItem(product_barcode="B", quantity=Decimal("4"))]
    new = [SaleLine("A", Decimal("3")), SaleLine("C", Decimal("1")), SaleLine("B", Decimal("1"))]

    assert dict(compute_item_deltas(old, new)) == {"B": Decimal("-3"), "C": Decimal("1")}


def test_update_consumes_only_the_increase(db, pharmacy, product_x):
    product, b1, b2 = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 8)], amount_given=50)
    assert _state(db, b1, b2) == (2, 5)

    res = update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id,
                      items=[_line("X-001", 6), _line("X-001", 5)])

    assert [(a.batch_id, a.qty) for a in res.allocations["X-001"]] == [(b1.id, Decimal("2")), (b2.id, Decimal("1"))]
    assert _state(db, b1, b2, product) == (0, 4, 4)
    assert usage_total(db, res.sale.id, product.id) == Decimal("11")
    assert len(res.items) == 2
    assert res.sale.total == Decimal("33.00")
    assert res.sale.amount_given == Decimal("50.00")
    assert res.sale.change_given == Decimal("17.00")


def test_update_returns_the_decrease_newest_first(db, pharmacy, product_x):
    product, b1, b2 = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 12)], amount_given=40)

    update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 9)])

    # the 2 units from b2 go back first, then 1 from b1
    assert _state(db, b1, b2, product) == (1, 5, 6)
    assert usage_total(db, res.sale.id, product.id) == Decimal("9")
    assert all(u.sale_item_id is None for u in db.query(SaleBatchUsage).all())


def test_update_keeps_historical_price(db, pharmacy, product_x, make_product, make_batch, today):
    product, _, _ = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 1)], amount_given=20)
    product.price = Decimal("9.99")
    other = make_product(barcode="Y-001", price="1.50")
    make_batch(other, 10, today + timedelta(days=30))

    res = update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id,
                      items=[_line("X-001", 2), _line("Y-001", 2)])
    prices = {i.product_barcode: i.price for i in res.items}
    assert prices == {"X-001": Decimal("3.00"), "Y-001": Decimal("1.50")}
    assert res.sale.total == Decimal("9.00")


def test_update_removing_a_barcode_restores_it(db, pharmacy, product_x, make_product, make_batch, today):
    product, b1, b2 = product_x
    other = make_product(barcode="Y-001", price="1.00")
    ob = make_batch(other, 4, today + timedelta(days=30))
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                       items=[_line("X-001", 3), _line("Y-001", 4)], amount_given=20)
    assert _state(db, ob, other) == (0, 0)

    update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 3)])

    assert _state(db, ob, other) == (4, 4)
    assert _state(db, b1, b2) == (7, 5)


def test_update_with_short_ledger_is_a_mismatch(db, pharmacy, product_x):
    product, b1, b2 = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 5)], amount_given=20)
    # lose part of the ledger behind the engine's back
    row = db.query(SaleBatchUsage).filter_by(sale_id=res.sale.id).one()
    row.qty = Decimal("2")
    db.commit()

    with pytest.raises(ReversalMismatch) as exc:
        update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 1)])
    assert exc.value.status_code == 409
    assert exc.value.requested == Decimal("4")
    assert exc.value.returned == Decimal("2")

    # nothing moved
    assert _state(db, b1, b2) == (5, 5)
    assert db.query(SaleItem).filter_by(sale_id=res.sale.id).one().quantity == 5


def test_update_insufficient_stock_leaves_sale_untouched(db, pharmacy, product_x):
    product, b1, b2 = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 5)], amount_given=100)

    with pytest.raises(InsufficientStock):
        update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 16)])

    assert _state(db, b1, b2) == (5, 5)
    assert db.query(SaleItem).filter_by(sale_id=res.sale.id).one().quantity == 5


def test_update_amount_given_must_cover_new_total(db, pharmacy, product_x):
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 1)], amount_given=5)
    with pytest.raises(InsufficientPayment):
        update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 2)])

    res = update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id,
                      items=[_line("X-001", 2)], amount_given=10, description="")
    assert res.sale.change_given == Decimal("4.00")
    assert res.sale.description is None


def test_update_and_delete_unknown_sale(db, pharmacy, product_x):
    with pytest.raises(NotFound):
        update_sale(db, pharmacy_id=pharmacy.id, sale_id=999, items=[_line("X-001", 1)])
    with pytest.raises(NotFound):
        delete_sale(db, pharmacy_id=pharmacy.id, sale_id=999)


def test_delete_after_updates_restores_everything(db, pharmacy, product_x):
    product, b1, b2 = product_x
    res = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 4)], amount_given=100)
    update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 13)])
    update_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id, items=[_line("X-001", 7), _line("X-001", 2)])

    delete_sale(db, pharmacy_id=pharmacy.id, sale_id=res.sale.id)

    assert _state(db, b1, b2, product) == (10, 5, 15)
    assert db.query(SaleBatchUsage).count() == 0


def test_sale_opens_low_stock_once(db, pharmacy, product_x):
    product, _, _ = product_x
    confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 6)], amount_given=100)
    confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None, items=[_line("X-001", 1)], amount_given=100)

    rows = db.query(Notification).filter_by(product_id=product.id, type=NotificationType.LOW_STOCK).all()
    assert len(rows) == 1
    assert rows[0].is_resolved is False


def test_list_and_get_sales(db, pharmacy, user, product_x, make_product, make_batch, today):
    other = make_product(barcode="Y-001", name="Ibuprofen", price="1.00")
    make_batch(other, 10, today + timedelta(days=30))
    first = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=user.id,
                         items=[_line("X-001", 1), _line("Y-001", 1)], amount_given=10)
    second = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                          items=[_line("Y-001", 5)], amount_given=10)

    page = list_sales(db, pharmacy_id=pharmacy.id)
    assert page["total"] == 2
    assert [r["sale"].id for r in page["data"]] == [second.sale.id, first.sale.id]
    assert [r["item_count"] for r in page["data"]] == [1, 2]

    assert list_sales(db, pharmacy_id=pharmacy.id, user_id=user.id)["total"] == 1
    assert list_sales(db, pharmacy_id=pharmacy.id, search="ibupro")["total"] == 2
    assert list_sales(db, pharmacy_id=pharmacy.id, search="X-001")["total"] == 1
    assert list_sales(db, pharmacy_id=pharmacy.id, search=str(second.sale.id))["total"] >= 1
    assert list_sales(db, pharmacy_id=pharmacy.id, min_total="5")["total"] == 1
    assert list_sales(db, pharmacy_id=pharmacy.id + 1)["total"] == 0

    detail = get_sale(db, pharmacy_id=pharmacy.id, sale_id=first.sale.id)
    assert len(detail["items"]) == 2
    assert sum(u.qty for u in detail["usage"]) == Decimal("2")

    with pytest.raises(NotFound):
        get_sale(db, pharmacy_id=pharmacy.id + 1, sale_id=first.sale.id)


def test_date_filter_uses_pharmacy_calendar_day(db, pharmacy, product_x, monkeypatch):
    from pharmapos.core.config import settings

    monkeypatch.setattr(settings, "APP_TIMEZONE", "Europe/Tirane")
    result = confirm_sale(db, pharmacy_id=pharmacy.id, user_id=None,
                          items=[_line("X-001", 1)], amount_given=5)
    # 23:30 UTC on 1 March is 00:30 on 2 March in Tirane
    result.sale.created_at = datetime(2026, 3, 1, 23, 30)
    db.commit()

    on_day = list_sales(db, pharmacy_id=pharmacy.id, date_from=date(2026, 3, 2), date_to=date(2026, 3, 2))
    day_before = list_sales(db, pharmacy_id=pharmacy.id, date_from=date(2026, 3, 1), date_to=date(2026, 3, 1))

    assert [r["sale"].id for r in on_day["data"]] == [result.sale.id]
    assert day_before["total"] == 0
