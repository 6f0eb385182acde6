"""initial schema

Revision ID: 3c1f9a7e2b10
Revises:
Create Date: 2026-09-14 10:12:44.215904

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
import sqlmodel


# revision identifiers, used by Alembic.
revision: str = '3c1f9a7e2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


user_role = sa.Enum('SHIPPER', 'CARRIER', 'DRIVER', 'WAREHOUSE', 'ADMIN', name='userrole')
user_status = sa.Enum('PENDING', 'ACTIVE', 'SUSPENDED', 'BANNED', name='userstatus')
subscription_tier = sa.Enum(
    'FREE_TRIAL', 'SMALL_FLEET', 'MEDIUM_FLEET', 'LARGE_FLEET', 'FLEX', name='subscriptiontier')
subscription_status = sa.Enum('TRIAL', 'ACTIVE', 'PAST_DUE', 'CANCELLED', name='subscriptionstatus')
shipment_status = sa.Enum(
    'OPEN', 'ASSIGNED', 'IN_TRANSIT', 'DELIVERED', 'COMPLETED', 'CANCELLED', name='shipmentstatus')
unit_status = sa.Enum(
    'CREATED', 'PICKED_UP', 'IN_WAREHOUSE', 'OUT_WAREHOUSE', 'IN_TRANSIT', 'DELIVERED', name='unitstatus')
scan_action = sa.Enum(
    'PICKUP', 'INBOUND', 'OUTBOUND', 'IN_TRANSIT', 'DELIVERED', 'DAMAGE', name='scanaction')
photo_type = sa.Enum(
    'ORIGIN', 'WAREHOUSE_IN', 'WAREHOUSE_OUT', 'DELIVERY', 'DAMAGE', 'SIGNATURE', name='phototype')
bid_status = sa.Enum('PENDING', 'ACCEPTED', 'REJECTED', 'WITHDRAWN', name='bidstatus')
dispute_type = sa.Enum(
    'DAMAGE_AT_PICKUP', 'DAMAGE_AT_WAREHOUSE', 'DAMAGE_AT_DELIVERY', 'DAMAGE_IN_TRANSIT',
    'CLIENT_REPORT', name='disputetype')
dispute_status = sa.Enum(
    'OPEN', 'UNDER_REVIEW', 'EVIDENCE_COMPLETE', 'RESOLVED', name='disputestatus')
liability = sa.Enum('CARRIER', 'WAREHOUSE', 'CLIENT', 'SHIPPER', 'UNKNOWN', name='liability')
audit_action = sa.Enum('CREATE', 'UPDATE', 'DELETE', 'STATUS_CHANGE', name='auditaction')


def timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    """Marketplace accounts, shipments with per-unit QR tracking, and disputes."""
    op.create_table(
        'user',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('hashed_password', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('first_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('last_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('phone', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('status', user_status, nullable=False),
        sa.Column('language', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_user_email'), 'user', ['email'], unique=True)
    op.create_index(op.f('ix_user_role'), 'user', ['role'], unique=False)

    op.create_table(
        'carrierprofile',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('company_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('slug', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('vat_number', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('country', sqlmodel.sql.sqltypes.AutoString(length=2), nullable=False),
        sa.Column('city', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('address', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('phone', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('fleet_size', sa.Integer(), nullable=False),
        sa.Column('vehicle_types', sa.JSON(), nullable=True),
        sa.Column('subscription_tier', subscription_tier, nullable=False),
        sa.Column('subscription_status', subscription_status, nullable=False),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('subscription_ends_at', sa.DateTime(), nullable=True),
        sa.Column('monthly_bids_used', sa.Integer(), nullable=False),
        sa.Column('verified', sa.Boolean(), nullable=False),
        sa.Column('rating', sa.Float(), nullable=False),
        sa.Column('total_deliveries', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_carrierprofile_user_id'), 'carrierprofile', ['user_id'], unique=True)
    op.create_index(op.f('ix_carrierprofile_company_name'), 'carrierprofile', ['company_name'], unique=False)
    op.create_index(op.f('ix_carrierprofile_slug'), 'carrierprofile', ['slug'], unique=True)

    op.create_table(
        'vehicle',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('carrier_id', sa.Uuid(), nullable=False),
        sa.Column('vehicle_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('license_plate', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('max_weight', sa.Float(), nullable=False),
        sa.Column('max_volume', sa.Float(), nullable=False),
        sa.Column('available', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['carrier_id'], ['carrierprofile.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_vehicle_carrier_id'), 'vehicle', ['carrier_id'], unique=False)
    op.create_index(op.f('ix_vehicle_license_plate'), 'vehicle', ['license_plate'], unique=True)

    op.create_table(
        'driver',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('carrier_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('license_number', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('license_expiry', sa.DateTime(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False),
        sa.Column('current_lat', sa.Float(), nullable=True),
        sa.Column('current_lng', sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(['carrier_id'], ['carrierprofile.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id')
    )
    op.create_index(op.f('ix_driver_carrier_id'), 'driver', ['carrier_id'], unique=False)

    op.create_table(
        'warehouse',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.Uuid(), nullable=False),
        sa.Column('name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('address', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('city', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('country', sqlmodel.sql.sqltypes.AutoString(length=2), nullable=False),
        sa.Column('capacity_m2', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['owner_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_warehouse_owner_id'), 'warehouse', ['owner_id'], unique=False)

    op.create_table(
        'shipment',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shipper_id', sa.Uuid(), nullable=False),
        sa.Column('tracking_number', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('cargo_description', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('cargo_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('pickup_address', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('pickup_city', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('pickup_country', sqlmodel.sql.sqltypes.AutoString(length=2), nullable=False),
        sa.Column('delivery_address', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('delivery_city', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('delivery_country', sqlmodel.sql.sqltypes.AutoString(length=2), nullable=False),
        sa.Column('weight', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('budget', sa.Float(), nullable=True),
        sa.Column('currency', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('pickup_date', sa.DateTime(), nullable=True),
        sa.Column('delivery_deadline', sa.DateTime(), nullable=True),
        sa.Column('status', shipment_status, nullable=False),
        sa.Column('carrier_id', sa.Uuid(), nullable=True),
        sa.Column('selected_bid_id', sa.Uuid(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shipper_id'], ['user.id']),
        sa.ForeignKeyConstraint(['carrier_id'], ['carrierprofile.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_shipment_shipper_id'), 'shipment', ['shipper_id'], unique=False)
    op.create_index(op.f('ix_shipment_tracking_number'), 'shipment', ['tracking_number'], unique=True)
    op.create_index(op.f('ix_shipment_status'), 'shipment', ['status'], unique=False)
    op.create_index(op.f('ix_shipment_carrier_id'), 'shipment', ['carrier_id'], unique=False)

    op.create_table(
        'shipmentunit',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shipment_id', sa.Uuid(), nullable=False),
        sa.Column('unit_number', sa.Integer(), nullable=False),
        sa.Column('total_units', sa.Integer(), nullable=False),
        sa.Column('description', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('weight', sa.Float(), nullable=False),
        sa.Column('current_status', unit_status, nullable=False),
        sa.Column('qr_token', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('qr_token_expires_at', sa.DateTime(), nullable=False),
        sa.Column('qr_code_url', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('last_scan_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipment.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_shipmentunit_shipment_id'), 'shipmentunit', ['shipment_id'], unique=False)
    op.create_index(op.f('ix_shipmentunit_qr_token'), 'shipmentunit', ['qr_token'], unique=True)

    op.create_table(
        'usedqrtoken',
        sa.Column('token', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('action', scan_action, nullable=False),
        sa.Column('retired_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['unit_id'], ['shipmentunit.id']),
        sa.PrimaryKeyConstraint('token')
    )
    op.create_index(op.f('ix_usedqrtoken_unit_id'), 'usedqrtoken', ['unit_id'], unique=False)

    op.create_table(
        'scanlog',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('action', scan_action, nullable=False),
        sa.Column('previous_status', unit_status, nullable=False),
        sa.Column('new_status', unit_status, nullable=False),
        sa.Column('scanned_by_id', sa.Uuid(), nullable=False),
        sa.Column('scanned_by_role', user_role, nullable=False),
        sa.Column('scanned_by_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('warehouse_id', sa.Uuid(), nullable=True),
        sa.Column('warehouse_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('has_damage', sa.Boolean(), nullable=False),
        sa.Column('damage_description', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('quantity_confirmed', sa.Integer(), nullable=True),
        sa.Column('vehicle_plate', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('scanned_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['unit_id'], ['shipmentunit.id']),
        sa.ForeignKeyConstraint(['scanned_by_id'], ['user.id']),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouse.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_scanlog_unit_id'), 'scanlog', ['unit_id'], unique=False)
    op.create_index(op.f('ix_scanlog_scanned_at'), 'scanlog', ['scanned_at'], unique=False)

    op.create_table(
        'unitphoto',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('type', photo_type, nullable=False),
        sa.Column('image_url', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('caption', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('uploaded_by_id', sa.Uuid(), nullable=False),
        sa.Column('uploaded_by_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('uploaded_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['unit_id'], ['shipmentunit.id']),
        sa.ForeignKeyConstraint(['uploaded_by_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_unitphoto_unit_id'), 'unitphoto', ['unit_id'], unique=False)

    op.create_table(
        'proofofdelivery',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('signature_url', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('delivery_notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('delivered_by_id', sa.Uuid(), nullable=False),
        sa.Column('delivered_by_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('delivered_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['unit_id'], ['shipmentunit.id']),
        sa.ForeignKeyConstraint(['delivered_by_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unit_id')
    )

    op.create_table(
        'bid',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shipment_id', sa.Uuid(), nullable=False),
        sa.Column('carrier_id', sa.Uuid(), nullable=False),
        sa.Column('total_price', sa.Float(), nullable=False),
        sa.Column('currency', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('vehicle_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('estimated_pickup', sa.DateTime(), nullable=False),
        sa.Column('estimated_delivery', sa.DateTime(), nullable=False),
        sa.Column('notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('status', bid_status, nullable=False),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipment.id']),
        sa.ForeignKeyConstraint(['carrier_id'], ['carrierprofile.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bid_shipment_id'), 'bid', ['shipment_id'], unique=False)
    op.create_index(op.f('ix_bid_carrier_id'), 'bid', ['carrier_id'], unique=False)

    op.create_table(
        'dispute',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('shipment_id', sa.Uuid(), nullable=False),
        sa.Column('unit_id', sa.Uuid(), nullable=False),
        sa.Column('type', dispute_type, nullable=False),
        sa.Column('status', dispute_status, nullable=False),
        sa.Column('damage_description', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('estimated_value', sa.Float(), nullable=True),
        sa.Column('is_auto_created', sa.Boolean(), nullable=False),
        sa.Column('evidence_snapshot', sa.JSON(), nullable=True),
        sa.Column('suggested_liability', liability, nullable=True),
        sa.Column('suggested_liability_score', sa.Float(), nullable=True),
        sa.Column('liability_reason', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('final_liability', liability, nullable=True),
        sa.Column('resolution_notes', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('compensation_amount', sa.Float(), nullable=True),
        sa.Column('rating_impact_applied', sa.Boolean(), nullable=False),
        sa.Column('rating_impact_value', sa.Float(), nullable=True),
        sa.Column('created_by_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_role', user_role, nullable=False),
        sa.Column('created_by_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('resolved_by_id', sa.Uuid(), nullable=True),
        sa.Column('resolved_by_name', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('review_started_at', sa.DateTime(), nullable=True),
        sa.Column('evidence_locked_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipment.id']),
        sa.ForeignKeyConstraint(['unit_id'], ['shipmentunit.id']),
        sa.ForeignKeyConstraint(['created_by_id'], ['user.id']),
        sa.ForeignKeyConstraint(['resolved_by_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_dispute_shipment_id'), 'dispute', ['shipment_id'], unique=False)
    op.create_index(op.f('ix_dispute_unit_id'), 'dispute', ['unit_id'], unique=False)
    op.create_index(op.f('ix_dispute_status'), 'dispute', ['status'], unique=False)

    op.create_table(
        'disputecomment',
        *timestamps(),
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('dispute_id', sa.Uuid(), nullable=False),
        sa.Column('author_id', sa.Uuid(), nullable=False),
        sa.Column('author_role', user_role, nullable=False),
        sa.Column('author_name', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('message', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['dispute_id'], ['dispute.id']),
        sa.ForeignKeyConstraint(['author_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_disputecomment_dispute_id'), 'disputecomment', ['dispute_id'], unique=False)

    op.create_table(
        'auditlog',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', sqlmodel.sql.sqltypes.AutoString(), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('actor_user_id', sa.Uuid(), nullable=False),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('ip_address', sqlmodel.sql.sqltypes.AutoString(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['actor_user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_auditlog_entity_type'), 'auditlog', ['entity_type'], unique=False)
    op.create_index(op.f('ix_auditlog_entity_id'), 'auditlog', ['entity_id'], unique=False)


def downgrade():
    """
    Drops every table in reverse dependency order.
    PostgreSQL keeps enum types after their tables are gone, so they are dropped explicitly.
    """
    for table in (
        'auditlog', 'disputecomment', 'dispute', 'bid', 'proofofdelivery', 'unitphoto',
        'scanlog', 'usedqrtoken', 'shipmentunit', 'shipment', 'warehouse', 'driver',
        'vehicle', 'carrierprofile', 'user'
    ):
        op.drop_table(table)

    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        for enum in (
            audit_action, liability, dispute_status, dispute_type, bid_status, photo_type,
            scan_action, unit_status, shipment_status, subscription_status, subscription_tier,
            user_status, user_role
        ):
            enum.drop(bind, checkfirst=True)
