# Overview: Flask CLI command groups for bootstrap and fiscal inspection.

# backend/vitana/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed [--name "Minha Loja"]
#   Create a default business with three sample products and a homologation fiscal config.
#
# Fiscal inspection:
# - python -m flask fiscal verify-key 3524...
#   Validate an NFCe access key and print its fields.
# - python -m flask fiscal show-config --business-id <uuid>
#   Print the issuer configuration and the next NFCe number.

import click
from flask.cli import with_appcontext

from .extensions import db
from .formatting import format_brl, format_cnpj, group_access_key
from .models import Business, FiscalConfig, Product
from .services.access_key import AccessKeyError, parse_access_key

SAMPLE_PRODUCTS = [
    # name, barcode, price_cents, cost_cents, stock, min_stock, category, brand
    ("Coca-Cola 2L", "7894900011517", 850, 520, 48, 10, "Bebidas", "Coca-Cola"),
    ("Cerveja Skol Lata 350ml", "7891991010924", 320, 210, 120, 24, "Bebidas", "Skol"),
    ("Agua Mineral Crystal 500ml", "7894900530018", 250, 120, 60, 12, "Bebidas", "Crystal"),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema created")


@system_group.command('seed')
@click.option('--name', 'business_name', default='Loja Demo', help='Business name')
@with_appcontext
def seed(business_name):
    """
    Seed a default business for local development.

    Creates (if missing):
    - Business with the given name
    - Sample products with stock and minimums
    - Fiscal configuration in homologacao, serie 1, numbering from 1
    """
    db.create_all()

    business = db.session.query(Business).filter_by(name=business_name).first()
    if not business:
        business = Business(name=business_name, subtitle="Sistema de Vendas", plan="free")
        db.session.add(business)
        db.session.commit()
        click.echo(f"PASS Created business: {business.name} (ID: {business.id})")
    else:
        click.echo(f"PASS Using existing business: {business.name} (ID: {business.id})")

    for name, barcode, price, cost, stock, min_stock, category, brand in SAMPLE_PRODUCTS:
        exists = db.session.query(Product).filter_by(business_id=business.id, barcode=barcode).first()
        if exists:
            click.echo(f"WARN  Product '{name}' already exists, skipping...")
            continue
        db.session.add(Product(
            business_id=business.id,
            name=name,
            barcode=barcode,
            category=category,
            brand=brand,
            price_cents=price,
            cost_cents=cost,
            stock=stock,
            min_stock=min_stock,
        ))
        click.echo(f"PASS Created product: {name} ({format_brl(price)}, stock {stock})")

    if db.session.get(FiscalConfig, business.id) is None:
        db.session.add(FiscalConfig(
            business_id=business.id,
            cnpj="11222333000181",
            inscricao_estadual="111222333444",
            razao_social=f"{business_name} LTDA",
            nome_fantasia=business_name,
            logradouro="Rua das Flores",
            numero="100",
            bairro="Centro",
            municipio="Sao Paulo",
            codigo_municipio="3550308",
            uf="SP",
            cep="01001000",
            serie=1,
            proximo_numero=1,
            ambiente="homologacao",
        ))
        click.echo("PASS Created fiscal configuration (homologacao, serie 1)")

    db.session.commit()
    click.echo(f"\nDONE Seeded business {business.id}")
    click.echo("Send X-Business-Id, X-User-Id and X-User-Role headers to call the API.")


@click.group('fiscal')
def fiscal_group():
    """NFCe inspection commands."""


@fiscal_group.command('verify-key')
@click.argument('key')
def verify_key(key):
    """Check an access key's modulo-11 digit and print its fields."""
    try:
        fields = parse_access_key(key)
    except AccessKeyError as e:
        raise click.ClickException(str(e))

    click.echo(group_access_key("".join(key.split())))
    for name in ("cuf", "yymm", "cnpj", "modelo", "serie", "numero", "tipo_emissao", "codigo_numerico"):
        click.echo(f"  {name:<16} {fields[name]}")
    if fields["valid"]:
        click.echo(f"PASS Check digit {fields['digito_verificador']} is valid")
    else:
        click.echo(f"FAIL Check digit {fields['digito_verificador']} does not match")
        raise SystemExit(1)


@fiscal_group.command('show-config')
@click.option('--business-id', required=True, help='Business ID')
@with_appcontext
def show_config(business_id):
    """Print the issuer configuration for a business."""
    config = db.session.get(FiscalConfig, business_id)
    if not config:
        raise click.ClickException(f"No fiscal configuration for business {business_id}")

    click.echo(f"{config.razao_social} ({format_cnpj(config.cnpj)})")
    click.echo(f"  IE               {config.inscricao_estadual}")
    click.echo(f"  Municipio        {config.municipio}/{config.uf} ({config.codigo_municipio})")
    click.echo(f"  Ambiente         {config.ambiente}")
    click.echo(f"  Contingencia     {'sim' if config.contingencia else 'nao'}")
    click.echo(f"  Serie            {config.serie:03d}")
    click.echo(f"  Proximo numero   {config.proximo_numero}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(fiscal_group)
