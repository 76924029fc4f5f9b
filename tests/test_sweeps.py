from datetime import timedelta
from decimal import Decimal

from pharmapos.models import BatchStatus, Notification, NotificationType
from pharmapos.services import sweeps
from pharmapos.services.sweeps import evaluate_low_stock, sweep_expired, sweep_near_expiry


def _types(db, product):
    return sorted(
        (r.batch_id, r.type.value)
        for r in db.query(Notification).filter_by(product_id=product.id).all()
    )


def test_expired_sweep_flips_and_recalcs(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    old = make_batch(product, 4, today + timedelta(days=2))
    fresh = make_batch(product, 20, today + timedelta(days=100))
    assert product.quantity == 24

    later = today + timedelta(days=3)
    summary = sweep_expired(db, today=later)

    assert summary.batches == 1
    assert summary.failed == []
    db.refresh(old)
    db.refresh(fresh)
    db.refresh(product)
    assert old.status == BatchStatus.EXPIRED
    assert old.quantity == 4
    assert fresh.status == BatchStatus.ACTIVE
    assert product.quantity == 20
    assert product.expiry_date == fresh.expiry_date
    assert _types(db, product) == [(old.id, "expired")]


def test_expired_sweep_is_idempotent(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    make_batch(product, 4, today + timedelta(days=2))
    later = today + timedelta(days=3)

    sweep_expired(db, today=later)
    second = sweep_expired(db, today=later)

    assert second.batches == 0
    assert len(_types(db, product)) == 2  # expired + out_of_stock


def test_expired_sweep_skips_empty_batches_for_alerts(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    empty = make_batch(product, 0, today + timedelta(days=1))
    make_batch(product, 30, None)

    sweep_expired(db, today=today + timedelta(days=2))

    db.refresh(empty)
    assert empty.status == BatchStatus.EXPIRED
    assert _types(db, product) == []


def test_expired_sweep_leaves_terminal_batches(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    gone = make_batch(product, 0, today + timedelta(days=1), status=BatchStatus.DISPOSED)
    sweep_expired(db, today=today + timedelta(days=2))
    db.refresh(gone)
    assert gone.status == BatchStatus.DISPOSED


def test_near_expiry_windows(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    make_batch(product, 50, None)
    far = make_batch(product, 5, today + timedelta(days=40))
    window = make_batch(product, 5, today + timedelta(days=20))
    final = make_batch(product, 5, today + timedelta(days=6))
    make_batch(product, 0, today + timedelta(days=3))

    summary = sweep_near_expiry(db, today=today)

    assert summary.notifications == 2
    assert _types(db, product) == sorted([
        (window.id, "near_expiry_initial"),
        (final.id, "near_expiry_7d"),
    ])

    # a week later the first window batch has entered the final week
    sweep_near_expiry(db, today=today + timedelta(days=14))
    assert _types(db, product) == sorted([
        (window.id, "near_expiry_initial"),
        (window.id, "near_expiry_7d"),
        (far.id, "near_expiry_initial"),
        (final.id, "near_expiry_7d"),
    ])

    again = sweep_near_expiry(db, today=today + timedelta(days=14))
    assert again.notifications == 0


def test_near_expiry_uses_pharmacy_window(db, pharmacy, make_product, make_batch, set_alerts, today):
    set_alerts(expiry_alert_days=60)
    product = make_product()
    make_batch(product, 50, None)
    far = make_batch(product, 5, today + timedelta(days=45))

    sweep_near_expiry(db, pharmacy_id=pharmacy.id, today=today)
    assert _types(db, product) == [(far.id, "near_expiry_initial")]


def test_low_stock_evaluation_applies_new_threshold(db, pharmacy, make_product, make_batch, set_alerts, today):
    product = make_product()
    make_batch(product, 15, today + timedelta(days=100))
    other = make_product()
    make_batch(other, 100, today + timedelta(days=100))

    set_alerts(low_stock_threshold=20)
    summary = evaluate_low_stock(db, pharmacy.id)

    assert summary.products == 2
    assert summary.notifications == 1
    assert _types(db, product) == [(0, "low_stock")]
    assert _types(db, other) == []

    again = evaluate_low_stock(db, pharmacy.id)
    assert again.notifications == 0


def test_low_stock_evaluation_recalcs_aged_snapshot(db, pharmacy, make_product, make_batch, today):
    product = make_product()
    make_batch(product, 15, today + timedelta(days=1))

    evaluate_low_stock(db, pharmacy.id, today=today + timedelta(days=5))

    db.refresh(product)
    assert product.quantity == Decimal("0")
    assert _types(db, product) == [(0, "out_of_stock")]


def test_near_expiry_skips_batches_changed_after_candidate_query(db, pharmacy, make_product, make_batch,
                                                                 monkeypatch, today):
    product = make_product()
    live = make_batch(product, 5, today + timedelta(days=10))
    disposed = make_batch(product, 5, today + timedelta(days=10), status=BatchStatus.DISPOSED)
    emptied = make_batch(product, 0, today + timedelta(days=10))

    # candidate list read before the other two batches were disposed / emptied
    original = sweeps._group_by_product

    def stale(rows):
        grouped = original(rows)
        grouped[(pharmacy.id, product.id)] += [disposed.id, emptied.id]
        return grouped

    monkeypatch.setattr(sweeps, "_group_by_product", stale)
    summary = sweep_near_expiry(db, today=today)

    assert summary.failed == []
    assert summary.notifications == 1
    assert _types(db, product) == [(live.id, "near_expiry_initial")]
