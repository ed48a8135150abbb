"""deduction engine tables (workers, deduction types, wage ranges, pay calculations)

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2025-06-02 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'workers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('identity_number', sa.String(length=40), nullable=True),
        sa.Column('nationality', sa.String(length=40), nullable=True),
        sa.Column('worker_type', sa.String(length=30), nullable=True),
        sa.Column('gender', sa.String(length=10), nullable=True),
        sa.Column('hired_date', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_workers_identity', 'workers', ['identity_number'], unique=False)

    op.create_table(
        'deduction_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=40), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('calculation_type',
                  sa.Enum('percentage', 'fixed', 'wage_range', name='deduction_calc_type'),
                  nullable=False, server_default='percentage'),
        sa.Column('employee_contribution', sa.Numeric(10, 2), nullable=True, server_default='0'),
        sa.Column('employer_contribution', sa.Numeric(10, 2), nullable=True, server_default='0'),
        sa.Column('applies_to_nationality', sa.String(length=30), nullable=True, server_default='all'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_until', sa.Date(), nullable=True),
        sa.Column('rounding_method', sa.String(length=10), nullable=False, server_default='round'),
        sa.Column('rounding_precision', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('rounding_tie_break', sa.String(length=10), nullable=False, server_default='half_up'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_deduction_types_code_window', 'deduction_types',
                    ['code', 'effective_from', 'effective_until'], unique=False)
    op.create_index('ix_deduction_types_active', 'deduction_types',
                    ['is_active', 'applies_to_nationality'], unique=False)

    op.create_table(
        'deduction_wage_ranges',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('deduction_type_id', sa.Integer(),
                  sa.ForeignKey('deduction_types.id', ondelete='CASCADE'), nullable=False),
        sa.Column('min_wage', sa.Numeric(10, 2), nullable=False),
        sa.Column('max_wage', sa.Numeric(10, 2), nullable=True),
        sa.Column('employee_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('employer_amount', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('employee_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('employer_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('calculation_method',
                  sa.Enum('fixed', 'percentage', name='wage_range_calc_method'),
                  nullable=False, server_default='fixed'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('max_wage IS NULL OR max_wage >= min_wage', name='ck_wage_range_max_ge_min'),
    )
    op.create_index('ix_deduction_wage_ranges_deduction_type_id', 'deduction_wage_ranges',
                    ['deduction_type_id'], unique=False)
    op.create_index('ix_wage_ranges_salary_lookup', 'deduction_wage_ranges',
                    ['deduction_type_id', 'min_wage', 'max_wage'], unique=False)

    op.create_table(
        'pay_calculations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('month_year', sa.String(length=7), nullable=False, unique=True),
        sa.Column('status', sa.Enum('draft', 'finalized', name='paycalc_status_enum'),
                  nullable=False, server_default='draft'),
        sa.Column('total_gross_salary', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_deductions', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_employer_deductions', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('total_net_salary', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('failures', sa.JSON(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'pay_calculation_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pay_calculation_id', sa.Integer(), sa.ForeignKey('pay_calculations.id'), nullable=False),
        sa.Column('worker_id', sa.Integer(), sa.ForeignKey('workers.id'), nullable=False),
        sa.Column('gross_salary', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('employee_deductions', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('employer_deductions', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('net_salary', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=8), nullable=True, server_default='RM'),
        sa.Column('deduction_breakdown', sa.JSON(), nullable=True),
        sa.Column('calculated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('pay_calculation_id', 'worker_id', name='uq_paycalc_detail_worker'),
    )
    op.create_index('ix_pay_calculation_details_pay_calculation_id', 'pay_calculation_details',
                    ['pay_calculation_id'], unique=False)
    op.create_index('ix_pay_calculation_details_worker_id', 'pay_calculation_details',
                    ['worker_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_pay_calculation_details_worker_id', table_name='pay_calculation_details')
    op.drop_index('ix_pay_calculation_details_pay_calculation_id', table_name='pay_calculation_details')
    op.drop_table('pay_calculation_details')
    op.drop_table('pay_calculations')
    op.drop_index('ix_wage_ranges_salary_lookup', table_name='deduction_wage_ranges')
    op.drop_index('ix_deduction_wage_ranges_deduction_type_id', table_name='deduction_wage_ranges')
    op.drop_table('deduction_wage_ranges')
    op.drop_index('ix_deduction_types_active', table_name='deduction_types')
    op.drop_index('ix_deduction_types_code_window', table_name='deduction_types')
    op.drop_table('deduction_types')
    op.drop_index('ix_workers_identity', table_name='workers')
    op.drop_table('workers')

    # postgres keeps enum types around after the tables go
    bind = op.get_bind()
    for name in ('paycalc_status_enum', 'wage_range_calc_method', 'deduction_calc_type'):
        sa.Enum(name=name).drop(bind, checkfirst=True)
