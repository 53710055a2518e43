"""initial schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the Vitana PDV schema:
- businesses: tenant root
- products / stock_movements: stock with its append-only audit trail
- sales / sale_items: completed sales with product name snapshots
- fiscal_configs: NFCe issuer data and numbering counter
- nfce / nfce_items: fiscal documents and their lines
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    op.create_table(
        'businesses',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('subtitle', sa.String(length=255), nullable=True),
        sa.Column('plan', sa.String(length=16), nullable=False),
        _timestamp('created_at'),
        sa.CheckConstraint("plan IN ('free', 'premium')", name='ck_businesses_plan'),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('brand', sa.String(length=120), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_cents', sa.Integer(), nullable=True),
        sa.Column('stock', sa.Integer(), nullable=False),
        sa.Column('min_stock', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'barcode', name='uq_products_business_barcode'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_index('ix_products_business_id', 'products', ['business_id'])
    op.create_index('ix_products_barcode', 'products', ['barcode'])
    op.create_index('ix_products_business_name', 'products', ['business_id', 'name'])

    op.create_table(
        'sales',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sales_business_id', 'sales', ['business_id'])
    op.create_index('ix_sales_business_created', 'sales', ['business_id', 'created_at'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_positive'),
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('product_id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('total_cost_cents', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('entrada', 'saida')", name='ck_stock_movements_type'),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
    )
    op.create_index('ix_stock_movements_business_id', 'stock_movements', ['business_id'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_sale_id', 'stock_movements', ['sale_id'])
    op.create_index('ix_stock_movements_business_created', 'stock_movements', ['business_id', 'created_at'])

    op.create_table(
        'fiscal_configs',
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('cnpj', sa.String(length=18), nullable=False),
        sa.Column('inscricao_estadual', sa.String(length=32), nullable=False),
        sa.Column('razao_social', sa.String(length=255), nullable=False),
        sa.Column('nome_fantasia', sa.String(length=255), nullable=True),
        sa.Column('telefone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('logradouro', sa.String(length=255), nullable=False),
        sa.Column('numero', sa.String(length=16), nullable=False),
        sa.Column('bairro', sa.String(length=120), nullable=False),
        sa.Column('municipio', sa.String(length=120), nullable=False),
        sa.Column('codigo_municipio', sa.String(length=7), nullable=False),
        sa.Column('uf', sa.String(length=2), nullable=False),
        sa.Column('cep', sa.String(length=9), nullable=False),
        sa.Column('serie', sa.Integer(), nullable=False),
        sa.Column('proximo_numero', sa.Integer(), nullable=False),
        sa.Column('ambiente', sa.String(length=16), nullable=False),
        sa.Column('contingencia', sa.Boolean(), nullable=False, server_default='0'),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('business_id'),
        sa.CheckConstraint('proximo_numero >= 1', name='ck_fiscal_configs_numero_positive'),
        sa.CheckConstraint("ambiente IN ('homologacao', 'producao')", name='ck_fiscal_configs_ambiente'),
    )

    op.create_table(
        'nfce',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('business_id', sa.String(length=36), nullable=False),
        sa.Column('sale_id', sa.String(length=36), nullable=False),
        sa.Column('numero', sa.Integer(), nullable=False),
        sa.Column('serie', sa.Integer(), nullable=False),
        sa.Column('modelo', sa.String(length=2), nullable=False),
        sa.Column('codigo_numerico', sa.String(length=8), nullable=False),
        sa.Column('digito_verificador', sa.Integer(), nullable=False),
        sa.Column('tipo_emissao', sa.Integer(), nullable=False),
        sa.Column('ambiente', sa.Integer(), nullable=False),
        sa.Column('chave_acesso', sa.String(length=44), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('codigo_status', sa.String(length=8), nullable=True),
        sa.Column('protocolo_autorizacao', sa.String(length=32), nullable=True),
        sa.Column('motivo_rejeicao', sa.String(length=255), nullable=True),
        sa.Column('protocolo_cancelamento', sa.String(length=32), nullable=True),
        sa.Column('observacoes', sa.Text(), nullable=True),
        sa.Column('valor_total_cents', sa.Integer(), nullable=False),
        sa.Column('valor_icms_cents', sa.Integer(), nullable=False),
        sa.Column('forma_pagamento', sa.String(length=2), nullable=False),
        sa.Column('informacoes_tributarias', sa.String(length=500), nullable=True),
        sa.Column('xml_gerado', sa.Text(), nullable=True),
        sa.Column('xml_autorizado', sa.Text(), nullable=True),
        sa.Column('emitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', name='uq_nfce_sale'),
        sa.UniqueConstraint('business_id', 'serie', 'numero', name='uq_nfce_business_serie_numero'),
        sa.UniqueConstraint('chave_acesso', name='uq_nfce_chave_acesso'),
        sa.CheckConstraint(
            "status IN ('pendente', 'autorizada', 'rejeitada', 'cancelada')", name='ck_nfce_status'
        ),
    )
    op.create_index('ix_nfce_business_id', 'nfce', ['business_id'])
    op.create_index('ix_nfce_business_status', 'nfce', ['business_id', 'status'])

    op.create_table(
        'nfce_items',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('nfce_id', sa.String(length=36), nullable=False),
        sa.Column('numero_item', sa.Integer(), nullable=False),
        sa.Column('codigo', sa.String(length=60), nullable=False),
        sa.Column('descricao', sa.String(length=255), nullable=False),
        sa.Column('ncm', sa.String(length=8), nullable=False),
        sa.Column('cfop', sa.String(length=4), nullable=False),
        sa.Column('cst', sa.String(length=3), nullable=False),
        sa.Column('unidade', sa.String(length=6), nullable=False),
        sa.Column('quantidade', sa.Integer(), nullable=False),
        sa.Column('valor_unitario_cents', sa.Integer(), nullable=False),
        sa.Column('valor_total_cents', sa.Integer(), nullable=False),
        sa.Column('aliquota_icms_bps', sa.Integer(), nullable=False),
        sa.Column('valor_icms_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['nfce_id'], ['nfce.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('nfce_id', 'numero_item', name='uq_nfce_items_nfce_numero'),
    )
    op.create_index('ix_nfce_items_nfce_id', 'nfce_items', ['nfce_id'])


def downgrade():
    op.drop_table('nfce_items')
    op.drop_table('nfce')
    op.drop_table('fiscal_configs')
    op.drop_table('stock_movements')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('products')
    op.drop_table('businesses')
