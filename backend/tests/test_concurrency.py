"""
Concurrency tests.

Two checkouts racing for the same stock must serialize: exactly one wins,
the other sees the updated level and fails with InsufficientStockError.
Uses a file-backed SQLite database so each thread gets its own connection.
"""

import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from conftest import TEST_PASSWORD, make_app
from kasirnest.extensions import db
from kasirnest.models import Product, StockMovement, Transaction
from kasirnest.services import auth_service, products_service, transaction_service
from kasirnest.services.concurrency import retry_on_collision, run_with_retry
from kasirnest.services.transaction_service import CartLine, InsufficientStockError


@pytest.fixture(scope='function')
def file_app(tmp_path):
    app = make_app(f"sqlite:///{tmp_path / 'race.sqlite3'}")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(app, store_id, product_id, quantity, workers):
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                trx = transaction_service.create_sale_transaction(
                    store_id, [CartLine(product_id, quantity)], 'cash'
                )
                outcome = ('ok', trx.id)
            except InsufficientStockError as exc:
                outcome = ('insufficient', exc.available)
            except Exception as exc:
                outcome = ('error', repr(exc))
            finally:
                db.session.remove()
            with lock:
                results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


class TestNoOversell:

    def test_two_concurrent_sales_for_last_units(self, file_app):
        with file_app.app_context():
            _user, store, _ = auth_service.register_user('race', 'race@x.com', TEST_PASSWORD)
            product = products_service.create_product(store.id, {'name': 'Last Five', 'price_cents': 100, 'stock': 5})
            store_id, product_id = store.id, product.id

        results = _race(file_app, store_id, product_id, quantity=3, workers=2)

        assert sorted(kind for kind, _ in results) == ['insufficient', 'ok'], results
        assert [value for kind, value in results if kind == 'insufficient'] == [2]

        with file_app.app_context():
            assert db.session.get(Product, product_id).stock == 2
            assert db.session.query(Transaction).count() == 1
            sales = db.session.query(StockMovement).filter_by(movement_type='sale').all()
            assert [m.quantity for m in sales] == [-3]

    def test_many_buyers_never_go_negative(self, file_app):
        with file_app.app_context():
            _user, store, _ = auth_service.register_user('race', 'race@x.com', TEST_PASSWORD)
            product = products_service.create_product(store.id, {'name': 'Popular', 'price_cents': 100, 'stock': 7})
            store_id, product_id = store.id, product.id

        results = _race(file_app, store_id, product_id, quantity=2, workers=5)

        kinds = [kind for kind, _ in results]
        assert 'error' not in kinds, results
        assert kinds.count('ok') == 3

        with file_app.app_context():
            product = db.session.get(Product, product_id)
            assert product.stock == 1
            movements = db.session.query(StockMovement).filter_by(product_id=product_id).all()
            assert sum(m.quantity for m in movements) == product.stock


class TestRunWithRetry:

    def test_retries_operational_errors_then_succeeds(self, app):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("UPDATE products", {}, Exception("database is locked"))
            return 'done'

        assert run_with_retry(flaky, backoff_base=0) == 'done'
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, app):
        def always_locked():
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_with_retry(always_locked, attempts=2, backoff_base=0)

    def test_integrity_errors_only_retried_on_request(self, app):
        calls = []

        def collide():
            calls.append(1)
            raise IntegrityError("INSERT INTO transactions", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            run_with_retry(collide, backoff_base=0)
        assert len(calls) == 1

        calls.clear()
        with pytest.raises(IntegrityError):
            run_with_retry(collide, backoff_base=0, retry_on=retry_on_collision())
        assert len(calls) == 3

    def test_other_errors_propagate_immediately(self, app):
        calls = []

        def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken, backoff_base=0)
        assert len(calls) == 1
