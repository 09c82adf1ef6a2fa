"""
Sale transaction tests.

Verifies:
- Checkout arithmetic (discount before tax, half-up rounding, change)
- The sale is one atomic unit: nothing is written when any line fails
- Stock conservation across sales, cancellations and refunds
- Cancelling twice is rejected without touching stock
"""

from datetime import datetime

import pytest

from conftest import create_product, sell
from kasirnest.extensions import db
from kasirnest.models import Customer, Product, StockMovement, Transaction, TransactionItem
from kasirnest.services import transaction_service
from kasirnest.services.transaction_service import (
    AlreadyCancelledError,
    CartLine,
    InsufficientStockError,
    PricedLine,
    ProductNotFoundError,
    TransactionNumberExhaustedError,
    compute_totals,
    generate_transaction_number,
)
from kasirnest.validation import ValidationError


# =============================================================================
# TOTALS
# =============================================================================


class TestComputeTotals:

    def test_line_and_cart_discounts_then_tax(self):
        lines = [PricedLine(2, 10000, 0), PricedLine(1, 5000, 1000)]
        totals = compute_totals(lines, discount_cents=2000, tax_rate_bps=1000)

        assert totals.subtotal_cents == 24000
        assert totals.discount_cents == 2000
        assert totals.taxable_cents == 22000
        assert totals.tax_cents == 2200
        assert totals.total_cents == 24200

    def test_cart_discount_clamped_to_subtotal(self):
        totals = compute_totals([PricedLine(1, 500)], discount_cents=900, tax_rate_bps=1000)
        assert totals.discount_cents == 500
        assert totals.tax_cents == 0
        assert totals.total_cents == 0

    @pytest.mark.parametrize(
        "price,bps,tax",
        [
            (5, 1000, 1),     # 0.5 rounds up
            (4, 1000, 0),     # 0.4 rounds down
            (15, 1000, 2),    # 1.5 rounds up
            (999, 1100, 110), # 109.89
            (12345, 0, 0),
        ],
    )
    def test_tax_rounds_half_up(self, price, bps, tax):
        assert compute_totals([PricedLine(1, price)], 0, bps).tax_cents == tax

    def test_rejects_bad_rate_and_discount(self):
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(1, 100)], 0, 10001)
        with pytest.raises(ValidationError):
            compute_totals([PricedLine(1, 100)], -1, 0)


class TestTransactionNumber:

    def test_format(self, app, store_owner):
        _user, store = store_owner
        number = generate_transaction_number(store.id, now=datetime(2026, 3, 9, 14, 5))
        assert number.startswith('TRX202603091405')
        assert len(number) == len('TRX202603091405') + 2

    def test_full_minute_is_a_retryable_server_condition(self, app, store_owner):
        _user, store = store_owner
        now = datetime(2026, 3, 9, 14, 5)
        db.session.add_all([
            Transaction(
                store_id=store.id,
                transaction_number=f'TRX202603091405{s:02d}',
                subtotal_cents=100,
                total_cents=100,
                payment_method='cash',
            )
            for s in range(100)
        ])
        db.session.commit()

        with pytest.raises(TransactionNumberExhaustedError) as exc_info:
            generate_transaction_number(store.id, now=now)
        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {'retry': True}


# =============================================================================
# CHECKOUT OVER HTTP
# =============================================================================


class TestCheckout:

    def test_register_login_sell_scenario(self, client, owner_headers):
        product = create_product(client, owner_headers, name='Shirt', price_cents=50000, stock=10)

        resp = sell(client, owner_headers, product['id'], 3)
        assert resp.status_code == 201
        data = resp.get_json()['data']
        assert data['subtotal_cents'] == 150000
        assert data['tax_cents'] == 15000
        assert data['total_cents'] == 165000
        assert data['status'] == 'completed'
        assert data['payment_status'] == 'paid'
        assert data['transaction_number'].startswith('TRX')

        fetched = client.get(f"/api/products/{product['id']}", headers=owner_headers).get_json()['data']
        assert fetched['stock'] == 7

    def test_cart_level_fields(self, client, owner_headers):
        a = create_product(client, owner_headers, name='A', price_cents=10000, stock=5)
        b = create_product(client, owner_headers, name='B', price_cents=5000, stock=5)

        resp = client.post('/api/transactions', json={
            'items': [
                {'product_id': a['id'], 'quantity': 2},
                {'product_id': b['id'], 'quantity': 1, 'discount_cents': 1000},
            ],
            'payment_method': 'card',
            'discount_cents': 2000,
            'tax_rate': 0.1,
            'amount_paid_cents': 25000,
        }, headers=owner_headers)
        assert resp.status_code == 201
        data = resp.get_json()['data']
        assert data['total_cents'] == 24200
        assert data['change_cents'] == 800

        detail = client.get(f"/api/transactions/{data['id']}", headers=owner_headers).get_json()['data']
        assert detail['payment_method'] == 'card'
        assert detail['tax_rate_bps'] == 1000
        assert [(i['product_name'], i['total_cents']) for i in detail['items']] == [('A', 20000), ('B', 4000)]

    def test_zero_tax_override(self, client, owner_headers):
        product = create_product(client, owner_headers, price_cents=1000)
        resp = sell(client, owner_headers, product['id'], 1, tax_rate=0)
        assert resp.get_json()['data']['total_cents'] == 1000

    def test_store_tax_rate_is_used_by_default(self, client, owner_headers):
        client.put('/api/stores/settings', json={'tax_rate': 0.11}, headers=owner_headers)
        product = create_product(client, owner_headers, price_cents=10000)
        resp = sell(client, owner_headers, product['id'], 1)
        assert resp.get_json()['data']['total_cents'] == 11100

    def test_underpayment_rejected(self, client, owner_headers):
        product = create_product(client, owner_headers, price_cents=1000)
        resp = sell(client, owner_headers, product['id'], 1, amount_paid_cents=500)
        assert resp.status_code == 400

    def test_insufficient_stock(self, client, owner_headers):
        product = create_product(client, owner_headers, stock=2)
        resp = sell(client, owner_headers, product['id'], 3)
        assert resp.status_code == 400
        body = resp.get_json()
        assert body['error'] == 'Insufficient stock for product: Shirt'
        assert body['details'] == {'product_name': 'Shirt', 'available': 2, 'requested': 3}

    def test_stock_checked_against_cumulative_quantity(self, client, owner_headers):
        product = create_product(client, owner_headers, stock=4)
        resp = client.post('/api/transactions', json={
            'items': [
                {'product_id': product['id'], 'quantity': 2},
                {'product_id': product['id'], 'quantity': 3},
            ],
            'payment_method': 'cash',
        }, headers=owner_headers)
        assert resp.status_code == 400

    def test_untracked_product_sells_without_movement(self, client, owner_headers):
        product = create_product(client, owner_headers, stock=0, track_inventory=False)
        assert sell(client, owner_headers, product['id'], 5).status_code == 201
        movements = client.get(f"/api/products/{product['id']}/movements", headers=owner_headers)
        assert movements.get_json()['data'] == []

    @pytest.mark.parametrize(
        "payload",
        [
            {'payment_method': 'cash'},
            {'items': [], 'payment_method': 'cash'},
            {'items': [{'product_id': 1, 'quantity': 0}], 'payment_method': 'cash'},
            {'items': [{'product_id': 1, 'quantity': 1.5}], 'payment_method': 'cash'},
            {'items': [{'product_id': 1, 'quantity': 1}], 'payment_method': 'barter'},
            {'items': [{'product_id': 1, 'quantity': 1}], 'payment_method': 'cash', 'discount_cents': -5},
            {'items': [{'product_id': 1, 'quantity': 1}], 'payment_method': 'cash', 'tax_rate': 2},
        ],
    )
    def test_invalid_requests(self, client, owner_headers, payload):
        create_product(client, owner_headers)
        resp = client.post('/api/transactions', json=payload, headers=owner_headers)
        assert resp.status_code == 400

    def test_customer_upsert_by_email(self, client, owner_headers):
        product = create_product(client, owner_headers)
        customer = {'name': 'Budi', 'email': 'Budi@x.com', 'phone': '0812'}

        first = sell(client, owner_headers, product['id'], 1, customer=customer).get_json()['data']
        second = sell(client, owner_headers, product['id'], 1,
                      customer={'email': 'budi@x.com'}).get_json()['data']

        a = client.get(f"/api/transactions/{first['id']}", headers=owner_headers).get_json()['data']
        b = client.get(f"/api/transactions/{second['id']}", headers=owner_headers).get_json()['data']
        assert a['customer']['id'] == b['customer']['id']
        assert a['customer']['email'] == 'budi@x.com'
        assert b['customer_name'] == 'Budi'

    def test_list_filters_and_order(self, client, owner_headers):
        product = create_product(client, owner_headers)
        first = sell(client, owner_headers, product['id'], 1).get_json()['data']
        second = sell(client, owner_headers, product['id'], 1).get_json()['data']
        client.post(f"/api/transactions/{first['id']}/cancel", headers=owner_headers)

        listed = client.get('/api/transactions', headers=owner_headers).get_json()['data']
        assert [t['id'] for t in listed] == [second['id'], first['id']]

        cancelled = client.get('/api/transactions?status=cancelled', headers=owner_headers).get_json()['data']
        assert [t['id'] for t in cancelled] == [first['id']]

        assert client.get('/api/transactions?status=lost', headers=owner_headers).status_code == 400
        assert client.get('/api/transactions?start=yesterday', headers=owner_headers).status_code == 400
        assert len(client.get('/api/transactions?limit=1', headers=owner_headers).get_json()['data']) == 1

    def test_foreign_transaction_is_404(self, client, owner_headers, other_owner):
        product = create_product(client, other_owner['headers'])
        trx = sell(client, other_owner['headers'], product['id'], 1).get_json()['data']
        assert client.get(f"/api/transactions/{trx['id']}", headers=owner_headers).status_code == 404
        assert client.post(f"/api/transactions/{trx['id']}/cancel", headers=owner_headers).status_code == 404


# =============================================================================
# CANCEL / REFUND
# =============================================================================


class TestReversal:

    def test_cancel_restores_stock(self, client, owner_headers):
        product = create_product(client, owner_headers)
        trx = sell(client, owner_headers, product['id'], 3).get_json()['data']

        resp = client.post(f"/api/transactions/{trx['id']}/cancel", json={'reason': 'Wrong item'},
                           headers=owner_headers)
        assert resp.status_code == 200
        data = resp.get_json()['data']
        assert data['status'] == 'cancelled'
        assert data['cancel_reason'] == 'Wrong item'
        assert data['cancelled_at'] is not None

        fetched = client.get(f"/api/products/{product['id']}", headers=owner_headers).get_json()['data']
        assert fetched['stock'] == 10

        latest = client.get(f"/api/products/{product['id']}/movements",
                            headers=owner_headers).get_json()['data'][0]
        assert latest['movement_type'] == 'adjustment'
        assert latest['quantity'] == 3
        assert latest['transaction_id'] == trx['id']

    def test_double_cancel_is_409_and_writes_nothing(self, client, owner_headers):
        product = create_product(client, owner_headers)
        trx = sell(client, owner_headers, product['id'], 3).get_json()['data']
        client.post(f"/api/transactions/{trx['id']}/cancel", headers=owner_headers)

        before = client.get(f"/api/products/{product['id']}/movements", headers=owner_headers).get_json()['data']
        resp = client.post(f"/api/transactions/{trx['id']}/cancel", headers=owner_headers)
        after = client.get(f"/api/products/{product['id']}/movements", headers=owner_headers).get_json()['data']

        assert resp.status_code == 409
        assert resp.get_json()['error'] == 'Transaction already cancelled'
        assert len(after) == len(before)
        assert client.get(f"/api/products/{product['id']}", headers=owner_headers).get_json()['data']['stock'] == 10

    def test_refund_uses_return_movements(self, client, owner_headers):
        product = create_product(client, owner_headers)
        trx = sell(client, owner_headers, product['id'], 2).get_json()['data']

        resp = client.post(f"/api/transactions/{trx['id']}/refund", headers=owner_headers)
        assert resp.status_code == 200
        data = resp.get_json()['data']
        assert data['status'] == 'refunded'
        assert data['payment_status'] == 'refunded'

        latest = client.get(f"/api/products/{product['id']}/movements",
                            headers=owner_headers).get_json()['data'][0]
        assert (latest['movement_type'], latest['quantity']) == ('return', 2)

        assert client.post(f"/api/transactions/{trx['id']}/cancel", headers=owner_headers).status_code == 409

    def test_staff_cannot_cancel(self, client, owner_headers, staff_headers):
        product = create_product(client, owner_headers)
        trx = sell(client, staff_headers, product['id'], 1)
        assert trx.status_code == 201
        resp = client.post(f"/api/transactions/{trx.get_json()['data']['id']}/cancel", headers=staff_headers)
        assert resp.status_code == 403


# =============================================================================
# SERVICE-LEVEL INVARIANTS
# =============================================================================


class TestAtomicity:

    def test_unknown_product_writes_nothing(self, app, store_owner, make_product):
        user, store = store_owner
        a = make_product(name='A', stock=5)
        b = make_product(name='B', stock=5)
        movements_before = db.session.query(StockMovement).count()

        with pytest.raises(ProductNotFoundError):
            transaction_service.create_sale_transaction(
                store.id,
                [CartLine(a.id, 1), CartLine(b.id, 2), CartLine(999999, 1)],
                'cash',
                customer={'name': 'Walk-in', 'email': 'walkin@x.com'},
                user_id=user.id,
            )

        assert db.session.query(Transaction).count() == 0
        assert db.session.query(TransactionItem).count() == 0
        assert db.session.query(Customer).count() == 0
        assert db.session.query(StockMovement).count() == movements_before
        assert db.session.get(Product, a.id).stock == 5
        assert db.session.get(Product, b.id).stock == 5

    def test_insufficient_stock_on_second_line_writes_nothing(self, app, store_owner, make_product):
        _user, store = store_owner
        a = make_product(name='A', stock=5)
        b = make_product(name='B', stock=1)

        with pytest.raises(InsufficientStockError) as excinfo:
            transaction_service.create_sale_transaction(store.id, [CartLine(a.id, 1), CartLine(b.id, 2)], 'cash')

        assert excinfo.value.available == 1
        assert excinfo.value.requested == 2
        assert db.session.query(Transaction).count() == 0
        assert db.session.get(Product, a.id).stock == 5


class TestStockConservation:

    def test_sales_and_cancellations_balance(self, app, store_owner, make_product):
        user, store = store_owner
        product = make_product(stock=20)

        sold = []
        for quantity in (3, 5, 2, 4):
            trx = transaction_service.create_sale_transaction(
                store.id, [CartLine(product.id, quantity)], 'cash', user_id=user.id
            )
            sold.append((trx.id, quantity))

        cancelled = [sold[1], sold[3]]
        for trx_id, _quantity in cancelled:
            transaction_service.cancel_transaction(store.id, trx_id, user_id=user.id)

        with pytest.raises(AlreadyCancelledError):
            transaction_service.cancel_transaction(store.id, sold[1][0], user_id=user.id)

        db.session.expire_all()
        stock = db.session.get(Product, product.id).stock
        expected = 20 - sum(q for _, q in sold) + sum(q for _, q in cancelled)
        assert stock == expected == 15

        movements = db.session.query(StockMovement).filter_by(product_id=product.id).all()
        assert sum(m.quantity for m in movements) == stock
        for m in movements:
            assert m.new_stock - m.previous_stock == m.quantity

    def test_duplicate_product_lines_reverse_once_per_product(self, app, store_owner, make_product):
        _user, store = store_owner
        product = make_product(stock=10)
        trx = transaction_service.create_sale_transaction(
            store.id, [CartLine(product.id, 2), CartLine(product.id, 3)], 'cash'
        )
        assert db.session.get(Product, product.id).stock == 5

        transaction_service.refund_transaction(store.id, trx.id)
        returns = db.session.query(StockMovement).filter_by(transaction_id=trx.id, movement_type='return').all()
        assert [m.quantity for m in returns] == [5]
        db.session.expire_all()
        assert db.session.get(Product, product.id).stock == 10
