"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-01-30 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

RESULT_STATUSES = (
    'PENDING_SAMPLE', 'SAMPLE_COLLECTED', 'IN_PROGRESS', 'PENDING_QC', 'QC_APPROVED',
    'PENDING_REVIEW', 'APPROVED', 'RELEASED', 'AMENDED', 'REJECTED', 'CANCELLED',
)
INTERPRETATIONS = ('NORMAL', 'LOW', 'HIGH', 'CRITICAL_LOW', 'CRITICAL_HIGH')
URGENCIES = ('ROUTINE', 'URGENT', 'STAT')
VALUE_SHAPES = ('TABULAR', 'NARRATIVE', 'GENERIC')


def upgrade() -> None:
    # Test catalog
    op.create_table(
        'diagnostic_tests',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('hospital_id', sa.String(length=50), nullable=False),
        sa.Column('test_code', sa.String(length=64), nullable=False),
        sa.Column('test_name', sa.String(length=255), nullable=False),
        sa.Column('short_name', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('sub_category', sa.String(length=64), nullable=True),
        sa.Column('department', sa.String(length=64), nullable=True),
        sa.Column('reference_ranges', sa.JSON(), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True, default=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_diagnostic_tests_hospital_id', 'diagnostic_tests', ['hospital_id'], unique=False)
    op.create_index('ix_diagnostic_tests_category', 'diagnostic_tests', ['category'], unique=False)

    # Orders with patient snapshot
    op.create_table(
        'diagnostic_orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('hospital_id', sa.String(length=50), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False),
        sa.Column('urgency', sa.Enum(*URGENCIES, name='urgency'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('clinical_indication', sa.Text(), nullable=True),
        sa.Column('special_instructions', sa.Text(), nullable=True),
        sa.Column('referring_doctor_id', sa.String(length=36), nullable=True),
        sa.Column('referring_doctor_name', sa.String(length=200), nullable=True),
        sa.Column('referring_doctor_specialization', sa.String(length=100), nullable=True),
        sa.Column('patient_id', sa.String(length=36), nullable=False),
        sa.Column('patient_number', sa.String(length=50), nullable=True),
        sa.Column('patient_name', sa.String(length=200), nullable=True),
        sa.Column('patient_age', sa.Integer(), nullable=True),
        sa.Column('patient_gender', sa.String(length=20), nullable=True),
        sa.Column('patient_date_of_birth', sa.DateTime(), nullable=True),
        sa.Column('patient_phone', sa.String(length=20), nullable=True),
        sa.Column('patient_blood_group', sa.String(length=10), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_diagnostic_orders_hospital_id', 'diagnostic_orders', ['hospital_id'], unique=False)
    op.create_index('ix_diagnostic_orders_order_number', 'diagnostic_orders', ['order_number'], unique=False)
    op.create_index('ix_diagnostic_orders_patient_id', 'diagnostic_orders', ['patient_id'], unique=False)

    # Results
    actor_columns = []
    for action in ('entered', 'submitted', 'qc_approved', 'qc_rejected', 'reviewed', 'released', 'amended', 'cancelled'):
        actor_columns.append(sa.Column(f'{action}_by', sa.String(length=36), nullable=True))
        actor_columns.append(sa.Column(f'{action}_at', sa.DateTime(), nullable=True))

    op.create_table(
        'diagnostic_results',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('hospital_id', sa.String(length=50), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=False),
        sa.Column('test_id', sa.String(length=36), nullable=False),
        sa.Column('status', sa.Enum(*RESULT_STATUSES, name='resultstatus'), nullable=False),
        sa.Column('value_shape', sa.Enum(*VALUE_SHAPES, name='valueshape'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('result_value', sa.Text(), nullable=True),
        sa.Column('result_numeric', sa.Float(), nullable=True),
        sa.Column('result_unit', sa.String(length=32), nullable=True),
        sa.Column('component_results', sa.JSON(), nullable=True),
        sa.Column('report_text', sa.Text(), nullable=True),
        sa.Column('impressions', sa.Text(), nullable=True),
        sa.Column('recommendations', sa.Text(), nullable=True),
        sa.Column('interpretation', sa.Enum(*INTERPRETATIONS, name='interpretation'), nullable=True),
        sa.Column('is_critical', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reference_min', sa.Float(), nullable=True),
        sa.Column('reference_max', sa.Float(), nullable=True),
        sa.Column('reference_text', sa.String(length=255), nullable=True),
        sa.Column('technician_notes', sa.Text(), nullable=True),
        sa.Column('reviewer_notes', sa.Text(), nullable=True),
        sa.Column('qc_notes', sa.Text(), nullable=True),
        sa.Column('qc_rejection_reason', sa.Text(), nullable=True),
        sa.Column('amendment_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('attachments', sa.JSON(), nullable=True),
        sa.Column('image_urls', sa.JSON(), nullable=True),
        sa.Column('sample_collected_at', sa.DateTime(), nullable=True),
        *actor_columns,
        sa.Column('amendment_history', sa.JSON(), nullable=True),
        sa.Column('visible_to_patient', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['diagnostic_orders.id'], ),
        sa.ForeignKeyConstraint(['test_id'], ['diagnostic_tests.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_diagnostic_results_hospital_id', 'diagnostic_results', ['hospital_id'], unique=False)
    op.create_index('ix_diagnostic_results_order_id', 'diagnostic_results', ['order_id'], unique=False)
    op.create_index('ix_diagnostic_results_status', 'diagnostic_results', ['status'], unique=False)
    op.create_index('ix_diagnostic_results_sample_collected_at', 'diagnostic_results', ['sample_collected_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_diagnostic_results_sample_collected_at', table_name='diagnostic_results')
    op.drop_index('ix_diagnostic_results_status', table_name='diagnostic_results')
    op.drop_index('ix_diagnostic_results_order_id', table_name='diagnostic_results')
    op.drop_index('ix_diagnostic_results_hospital_id', table_name='diagnostic_results')
    op.drop_table('diagnostic_results')

    op.drop_index('ix_diagnostic_orders_patient_id', table_name='diagnostic_orders')
    op.drop_index('ix_diagnostic_orders_order_number', table_name='diagnostic_orders')
    op.drop_index('ix_diagnostic_orders_hospital_id', table_name='diagnostic_orders')
    op.drop_table('diagnostic_orders')

    op.drop_index('ix_diagnostic_tests_category', table_name='diagnostic_tests')
    op.drop_index('ix_diagnostic_tests_hospital_id', table_name='diagnostic_tests')
    op.drop_table('diagnostic_tests')

    sa.Enum(name='resultstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='valueshape').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='interpretation').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='urgency').drop(op.get_bind(), checkfirst=True)
