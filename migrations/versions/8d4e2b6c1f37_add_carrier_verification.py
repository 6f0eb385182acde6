"""add carrier verification

Revision ID: 8d4e2b6c1f37
Revises: 3c1f9a7e2b10
Create Date: 2026-10-18 09:27:03.518240

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '8d4e2b6c1f37'
down_revision: Union[str, Sequence[str], None] = '3c1f9a7e2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


verification_type = sa.Enum(
    'EMAIL_PHONE', 'COMPANY_REG', 'VAT_NIPT', 'TRANSPORT_LICENSE', 'INSURANCE', 'BANK_ACCOUNT',
    name='verificationtype')
verification_status = sa.Enum(
    'PENDING', 'APPROVED', 'REJECTED', 'EXPIRED', 'MISSING', name='verificationstatus')


def upgrade():
    """Compliance documents a carrier submits for the verified badge."""
    op.create_table(
        'carrierverification',
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('carrier_id', sa.Uuid(), nullable=False),
        sa.Column('type', verification_type, nullable=False),
        sa.Column('status', verification_status, nullable=False),
        sa.Column('document_url', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('reviewed_by_id', sa.Uuid(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['carrier_id'], ['carrierprofile.id']),
        sa.ForeignKeyConstraint(['reviewed_by_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('carrier_id', 'type')
    )
    op.create_index(
        op.f('ix_carrierverification_carrier_id'), 'carrierverification', ['carrier_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_carrierverification_carrier_id'), table_name='carrierverification')
    op.drop_table('carrierverification')

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        verification_status.drop(bind, checkfirst=True)
        verification_type.drop(bind, checkfirst=True)
