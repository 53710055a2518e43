# Overview: Threaded tests for NFCe number allocation and stock decrements under contention.

"""
Concurrency Tests

Covers:
- Concurrent generate calls never share a proximo_numero
- Concurrent sales competing for the last units never drive stock negative

Each worker runs in its own thread with its own app context (and so its own
session) against the temp-file SQLite database, released together by a
barrier.
"""

import threading

from vitana.extensions import db
from vitana.models import FiscalConfig, FiscalDocument, Product, StockMovement
from vitana.services import nfce_service, sales_service
from vitana.services.stock_service import InsufficientStock

from conftest import make_product, sale_line

WORKERS = 6


def _run_concurrently(app, work, count=WORKERS):
    """Run work(index) in `count` threads; return (results, errors)."""
    barrier = threading.Barrier(count)
    results = []
    errors = []
    lock = threading.Lock()

    def worker(index):
        with app.app_context():
            try:
                barrier.wait()
                outcome = work(index)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestNumberAllocation:
    def test_concurrent_generate_never_shares_a_number(self, app, db_session, business_a, fiscal_config, coca):
        business_id = business_a.id
        sale_ids = [
            sales_service.complete_sale(
                business_id=business_id, user_id="cashier-1",
                lines=[sale_line(coca, 1)], payment_method="dinheiro",
            ).id
            for _ in range(WORKERS)
        ]
        db_session.commit()

        def work(index):
            return nfce_service.generate(business_id, sale_ids[index]).numero

        numeros, errors = _run_concurrently(app, work)

        assert errors == []
        assert sorted(numeros) == list(range(1, WORKERS + 1))

        db_session.expire_all()
        assert db_session.get(FiscalConfig, business_id).proximo_numero == WORKERS + 1
        keys = [row.chave_acesso for row in db_session.query(FiscalDocument).all()]
        assert len(set(keys)) == WORKERS


class TestStockContention:
    def test_last_units_are_sold_once(self, app, db_session, business_a):
        business_id = business_a.id
        product = make_product(db_session, business_a, name="Pao de Queijo", price_cents=450, stock=3)
        product_id = product.id
        lines = [sale_line(product, 1) for _ in range(WORKERS)]
        db_session.commit()

        def work(index):
            return sales_service.complete_sale(
                business_id=business_id, user_id=f"cashier-{index}",
                lines=[lines[index]], payment_method="pix",
            ).id

        sold, errors = _run_concurrently(app, work)

        assert len(sold) == 3
        assert len(errors) == WORKERS - 3
        assert all(isinstance(exc, InsufficientStock) for exc in errors)

        db_session.expire_all()
        assert db_session.get(Product, product_id).stock == 0
        movements = db_session.query(StockMovement).filter_by(product_id=product_id).all()
        assert len(movements) == 3
        assert {m.sale_id for m in movements} == set(sold)
