"""
Pytest fixtures for Vitana backend tests.

Provides an application bound to a temporary SQLite file, per-test table
wipes, tenant fixtures, and header helpers for the test client.
"""

import pytest

from vitana import create_app
from vitana.extensions import db
from vitana.models import Business, FiscalConfig, Product
from vitana.services.transmitters import MockTransmitter


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "vitana-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'FISCAL_TRANSMITTER': 'mock',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def transmitter(app):
    """Fresh mock SEFAZ per test; tweak reject_with / fail_times as needed."""
    mock = MockTransmitter()
    app.extensions["fiscal_transmitter"] = mock
    yield mock
    app.extensions["fiscal_transmitter"] = MockTransmitter()


@pytest.fixture(scope='function')
def business_a(db_session):
    """Create Business A (first tenant)."""
    business = Business(name="Mercadinho A", subtitle="Sistema de Vendas")
    db_session.add(business)
    db_session.commit()
    return business


@pytest.fixture(scope='function')
def business_b(db_session):
    """Create Business B (second tenant)."""
    business = Business(name="Mercadinho B")
    db_session.add(business)
    db_session.commit()
    return business


def make_product(session, business, **overrides) -> Product:
    fields = {
        "business_id": business.id,
        "name": "Produto",
        "price_cents": 100,
        "stock": 10,
        "min_stock": 0,
    }
    fields.update(overrides)
    product = Product(**fields)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def coca(db_session, business_a):
    """Coca-Cola 2L, R$ 8,50, 48 in stock."""
    return make_product(
        db_session, business_a,
        name="Coca-Cola 2L", barcode="7894900011517",
        price_cents=850, cost_cents=520, stock=48, min_stock=10,
    )


@pytest.fixture(scope='function')
def skol(db_session, business_a):
    """Cerveja Skol Lata 350ml, R$ 3,20, 120 in stock."""
    return make_product(
        db_session, business_a,
        name="Cerveja Skol Lata 350ml", barcode="7891991010924",
        price_cents=320, cost_cents=210, stock=120, min_stock=24,
    )


def make_fiscal_config(session, business, **overrides) -> FiscalConfig:
    fields = {
        "business_id": business.id,
        "cnpj": "11222333000181",
        "inscricao_estadual": "111222333444",
        "razao_social": "Mercadinho A LTDA",
        "nome_fantasia": "Mercadinho A",
        "logradouro": "Rua das Flores",
        "numero": "100",
        "bairro": "Centro",
        "municipio": "Sao Paulo",
        "codigo_municipio": "3550308",
        "uf": "SP",
        "cep": "01001000",
        "serie": 1,
        "proximo_numero": 1,
        "ambiente": "homologacao",
    }
    fields.update(overrides)
    config = FiscalConfig(**fields)
    session.add(config)
    session.commit()
    return config


@pytest.fixture(scope='function')
def fiscal_config(db_session, business_a):
    """Homologation issuer config for Business A, serie 1, numbering from 1."""
    return make_fiscal_config(db_session, business_a)


def sale_line(product, quantity, price_cents=None) -> dict:
    """Normalized cart line as validate_sale_items would produce it."""
    unit = product.price_cents if price_cents is None else price_cents
    return {
        "product_id": product.id,
        "product_name": None,
        "quantity": quantity,
        "unit_price_cents": unit,
        "total_cents": quantity * unit,
    }


def identity_headers(business, role: str = "admin", user_id: str = "user-1") -> dict:
    """Identity headers as set by the upstream auth service."""
    return {
        "X-Business-Id": business.id,
        "X-User-Id": user_id,
        "X-User-Role": role,
    }
