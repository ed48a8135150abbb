from datetime import datetime, date
from estate_payroll.extensions import db


class DeductionType(db.Model):
    """
    One effective-dated version of a statutory deduction (EPF_LOCAL, SOCSO, EIS_LOCAL...).

    `code` is not unique: a rate change is a new row with a later window, the old row
    only ever gets its `effective_until` closed.
    """
    __tablename__ = "deduction_types"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)

    # percentage: contributions are rates (11.00 == 11%); fixed: currency amounts;
    # wage_range: values come from deduction_wage_ranges
    calculation_type = db.Column(
        db.Enum("percentage", "fixed", "wage_range", name="deduction_calc_type"),
        nullable=False, default="percentage",
    )
    employee_contribution = db.Column(db.Numeric(10, 2), default=0)
    employer_contribution = db.Column(db.Numeric(10, 2), default=0)

    applies_to_nationality = db.Column(db.String(30), default="all")  # all / local / foreigner / foreigner_no_passport
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_until = db.Column(db.Date)

    rounding_method = db.Column(db.String(10), nullable=False, default="round")   # round / ceil / floor
    rounding_precision = db.Column(db.Integer, nullable=False, default=2)
    rounding_tie_break = db.Column(db.String(10), nullable=False, default="half_up")  # half_up / half_even

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    wage_ranges = db.relationship(
        "DeductionWageRange",
        back_populates="deduction_type",
        cascade="all, delete-orphan",
        order_by="DeductionWageRange.min_wage",
        lazy="selectin",
    )

    __table_args__ = (
        db.Index("ix_deduction_types_code_window", "code", "effective_from", "effective_until"),
        db.Index("ix_deduction_types_active", "is_active", "applies_to_nationality"),
    )


class DeductionWageRange(db.Model):
    __tablename__ = "deduction_wage_ranges"

    id = db.Column(db.Integer, primary_key=True)
    deduction_type_id = db.Column(
        db.Integer, db.ForeignKey("deduction_types.id", ondelete="CASCADE"), nullable=False, index=True
    )
    min_wage = db.Column(db.Numeric(10, 2), nullable=False)
    max_wage = db.Column(db.Numeric(10, 2))          # NULL == "and above"
    employee_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    employer_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    employee_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    employer_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    calculation_method = db.Column(
        db.Enum("fixed", "percentage", name="wage_range_calc_method"), nullable=False, default="fixed"
    )
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    deduction_type = db.relationship("DeductionType", back_populates="wage_ranges")

    __table_args__ = (
        db.Index("ix_wage_ranges_salary_lookup", "deduction_type_id", "min_wage", "max_wage"),
        db.CheckConstraint("max_wage IS NULL OR max_wage >= min_wage", name="ck_wage_range_max_ge_min"),
    )
