# Overview: Pytest coverage for sale completion and the atomic ledger batch.

"""
Sale Transaction Tests

Prove that a finished sale is recorded all-or-nothing:
1. Header, items, stock decrements and movements commit together
2. A single short line rolls back the whole batch
3. Totals are exact in cents
4. Product names on sale items are snapshots
"""

import pytest
from sqlalchemy import insert, update

from vitana.extensions import db
from vitana.models import Business, Product, Sale, SaleItem, StockMovement
from vitana.services import sales_service
from vitana.services.ledger_store import Statement, TransactionFailed, execute_atomic
from vitana.services.sales_service import SaleNotFound
from vitana.services.stock_service import InsufficientStock, ProductNotFound
from vitana.validation import ValidationError

from conftest import make_product, sale_line


def _counts():
    return (
        db.session.query(Sale).count(),
        db.session.query(SaleItem).count(),
        db.session.query(StockMovement).count(),
    )


class TestCompleteSale:
    def test_two_cokes_and_a_beer(self, db_session, business_a, coca, skol):
        """2 x 8.50 + 1 x 3.20 = 20.20, two saida movements."""
        sale = sales_service.complete_sale(
            business_id=business_a.id,
            user_id="cashier-1",
            lines=[sale_line(coca, 2), sale_line(skol, 1)],
            payment_method="dinheiro",
        )

        assert sale.total_cents == 2020
        assert sale.user_id == "cashier-1"
        assert sale.payment_method == "dinheiro"
        assert [item.product_name for item in sale.items] == ["Coca-Cola 2L", "Cerveja Skol Lata 350ml"]
        assert [item.total_cents for item in sale.items] == [1700, 320]
        assert [item.position for item in sale.items] == [1, 2]

        assert db_session.get(Product, coca.id).stock == 46
        assert db_session.get(Product, skol.id).stock == 119

        movements = db_session.query(StockMovement).filter_by(sale_id=sale.id).all()
        assert len(movements) == 2
        assert {m.type for m in movements} == {"saida"}
        assert {(m.product_id, m.quantity) for m in movements} == {(coca.id, 2), (skol.id, 1)}
        assert all(m.reason == "Venda" for m in movements)

    def test_total_is_sum_of_items(self, db_session, business_a, coca, skol):
        sale = sales_service.complete_sale(
            business_id=business_a.id,
            user_id="u",
            lines=[sale_line(coca, 3, price_cents=799), sale_line(skol, 7, price_cents=333)],
            payment_method="pix",
        )
        assert sale.total_cents == sum(item.total_cents for item in sale.items)
        for item in sale.items:
            assert item.total_cents == item.quantity * item.unit_price_cents

    def test_insufficient_stock_rolls_back_everything(self, db_session, business_a, coca, skol):
        before = _counts()

        with pytest.raises(InsufficientStock) as exc:
            sales_service.complete_sale(
                business_id=business_a.id,
                user_id="u",
                lines=[sale_line(coca, 2), sale_line(skol, 121)],
                payment_method="dinheiro",
            )

        assert exc.value.details["product_id"] == skol.id
        assert exc.value.details["requested_quantity"] == 121
        assert exc.value.details["available"] == 120
        assert _counts() == before
        assert db_session.get(Product, coca.id).stock == 48
        assert db_session.get(Product, skol.id).stock == 120

    def test_exact_stock_is_allowed(self, db_session, business_a):
        last = make_product(db_session, business_a, name="Ultimo", stock=3)
        sales_service.complete_sale(
            business_id=business_a.id, user_id="u", lines=[sale_line(last, 3)], payment_method="pix",
        )
        assert db_session.get(Product, last.id).stock == 0

    def test_same_product_on_two_lines_is_checked_cumulatively(self, db_session, business_a):
        product = make_product(db_session, business_a, name="Pao", stock=5)
        with pytest.raises(InsufficientStock):
            sales_service.complete_sale(
                business_id=business_a.id,
                user_id="u",
                lines=[sale_line(product, 3), sale_line(product, 3)],
                payment_method="dinheiro",
            )
        assert db_session.get(Product, product.id).stock == 5

    def test_unknown_product(self, db_session, business_a, coca):
        line = sale_line(coca, 1)
        line["product_id"] = "missing"
        with pytest.raises(ProductNotFound):
            sales_service.complete_sale(
                business_id=business_a.id, user_id="u", lines=[line], payment_method="pix",
            )
        assert _counts() == (0, 0, 0)

    def test_other_business_product_is_not_found(self, db_session, business_a, business_b):
        foreign = make_product(db_session, business_b, name="Alheio", stock=50)
        line = sale_line(foreign, 1)
        line["product_name"] = "Alheio"

        with pytest.raises(ProductNotFound):
            sales_service.complete_sale(
                business_id=business_a.id, user_id="u", lines=[line], payment_method="pix",
            )
        assert db_session.get(Product, foreign.id).stock == 50

    def test_empty_cart(self, db_session, business_a):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                business_id=business_a.id, user_id="u", lines=[], payment_method="pix",
            )

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_quantity_rejected_before_writing(self, db_session, business_a, coca, skol, quantity):
        before = _counts()

        with pytest.raises(ValidationError) as exc:
            sales_service.complete_sale(
                business_id=business_a.id,
                user_id="u",
                lines=[sale_line(skol, 1), sale_line(coca, quantity)],
                payment_method="dinheiro",
            )

        assert exc.value.details == {"product_id": coca.id, "quantity": quantity}
        assert _counts() == before
        assert db_session.get(Product, coca.id).stock == 48
        assert db_session.get(Product, skol.id).stock == 120

    def test_product_name_is_a_snapshot(self, db_session, business_a, coca):
        sale = sales_service.complete_sale(
            business_id=business_a.id, user_id="u", lines=[sale_line(coca, 1)], payment_method="pix",
        )
        coca.name = "Coca-Cola 2L Nova Embalagem"
        db_session.commit()

        reloaded = sales_service.get_sale(business_a.id, sale.id)
        assert reloaded.items[0].product_name == "Coca-Cola 2L"

    def test_client_supplied_name_is_kept(self, db_session, business_a, coca):
        line = sale_line(coca, 1)
        line["product_name"] = "Refri 2L"
        sale = sales_service.complete_sale(
            business_id=business_a.id, user_id="u", lines=[line], payment_method="pix",
        )
        assert sale.items[0].product_name == "Refri 2L"


class TestSaleQueries:
    def test_get_sale_is_business_scoped(self, db_session, business_a, business_b, coca):
        sale = sales_service.complete_sale(
            business_id=business_a.id, user_id="u", lines=[sale_line(coca, 1)], payment_method="pix",
        )
        with pytest.raises(SaleNotFound):
            sales_service.get_sale(business_b.id, sale.id)

    def test_list_sales(self, db_session, business_a, coca):
        for _ in range(3):
            sales_service.complete_sale(
                business_id=business_a.id, user_id="u", lines=[sale_line(coca, 1)], payment_method="pix",
            )
        assert len(sales_service.list_sales(business_a.id)) == 3
        assert len(sales_service.list_sales(business_a.id, limit=2)) == 2


class TestExecuteAtomic:
    def test_shortfall_without_factory_is_transaction_failed(self, db_session, business_a, coca):
        table = Product.__table__
        statements = [
            Statement(clause=update(table).where(table.c.id == coca.id).values(stock=1)),
            Statement(
                clause=update(table).where(table.c.id == "nope").values(stock=0),
                expect_rows=1,
                label="missing",
            ),
        ]
        with pytest.raises(TransactionFailed) as exc:
            execute_atomic(statements)

        assert exc.value.details["statement"] == "missing"
        assert db_session.get(Product, coca.id).stock == 48

    def test_database_error_rolls_back_earlier_statements(self, db_session, business_a, coca):
        table = Product.__table__
        statements = [
            Statement(clause=update(table).where(table.c.id == coca.id).values(stock=0)),
            Statement(clause=insert(Business.__table__).values(id="b-x", name=None)),
        ]
        with pytest.raises(TransactionFailed):
            execute_atomic(statements)

        assert db_session.get(Product, coca.id).stock == 48
        assert db_session.get(Business, "b-x") is None

    def test_returns_applied_count(self, db_session, business_a, coca):
        table = Product.__table__
        applied = execute_atomic([
            Statement(clause=update(table).where(table.c.id == coca.id).values(min_stock=1), expect_rows=1),
            Statement(clause=update(table).where(table.c.id == coca.id).values(min_stock=2), expect_rows=1),
        ])
        assert applied == 2
        assert db_session.get(Product, coca.id).min_stock == 2
