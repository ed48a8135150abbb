from datetime import datetime
from decimal import Decimal
from sqlalchemy import func
from estate_payroll.extensions import db


class PayCalculation(db.Model):
    __tablename__ = "pay_calculations"

    id = db.Column(db.Integer, primary_key=True)
    month_year = db.Column(db.String(7), nullable=False, unique=True)   # "2025-06"
    status = db.Column(db.Enum("draft", "finalized", name="paycalc_status_enum"), nullable=False, default="draft")

    total_gross_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)            # employee side
    total_employer_deductions = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_net_salary = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    failures = db.Column(db.JSON)       # [{worker_id, deduction_code, code, message}] from the last run
    finalized_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    details = db.relationship(
        "PayCalculationDetail",
        back_populates="pay_calculation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_finalized(self) -> bool:
        return self.status == "finalized"

    @classmethod
    def find_or_create_for_month(cls, month_year: str) -> "PayCalculation":
        pc = cls.query.filter_by(month_year=month_year).first()
        if pc:
            return pc
        pc = cls(
            month_year=month_year,
            status="draft",
            total_gross_salary=0,
            total_deductions=0,
            total_employer_deductions=0,
            total_net_salary=0,
        )
        db.session.add(pc)
        db.session.flush()
        return pc

    def recalculate_overall_total(self):
        """Grand totals straight from the detail rows (never incremented in place)."""
        D = PayCalculationDetail
        row = (
            db.session.query(
                func.coalesce(func.sum(D.gross_salary), 0),
                func.coalesce(func.sum(D.employee_deductions), 0),
                func.coalesce(func.sum(D.employer_deductions), 0),
                func.coalesce(func.sum(D.net_salary), 0),
            )
            .filter(D.pay_calculation_id == self.id)
            .one()
        )
        self.total_gross_salary, self.total_deductions, self.total_employer_deductions, self.total_net_salary = (
            Decimal(str(v)).quantize(Decimal("0.01")) for v in row
        )


class PayCalculationDetail(db.Model):
    __tablename__ = "pay_calculation_details"

    id = db.Column(db.Integer, primary_key=True)
    pay_calculation_id = db.Column(db.Integer, db.ForeignKey("pay_calculations.id"), nullable=False, index=True)
    worker_id = db.Column(db.Integer, db.ForeignKey("workers.id"), nullable=False, index=True)

    gross_salary = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    employee_deductions = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # deducted from salary
    employer_deductions = db.Column(db.Numeric(10, 2), nullable=False, default=0)  # company cost
    net_salary = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(8), default="RM")

    # {"EPF_LOCAL": {"name": "EPF", "employee_amount": "330.00", "employer_amount": "390.00"}, ...}
    deduction_breakdown = db.Column(db.JSON)
    calculated_at = db.Column(db.DateTime)

    pay_calculation = db.relationship("PayCalculation", back_populates="details")
    worker = db.relationship("Worker", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("pay_calculation_id", "worker_id", name="uq_paycalc_detail_worker"),
    )

    def apply_breakdown(self, breakdown):
        """Copy a DeductionBreakdown onto this row; caller commits."""
        self.gross_salary = breakdown.gross_salary
        self.deduction_breakdown = breakdown.deductions_dict()
        self.employee_deductions = breakdown.total_employee_deductions
        self.employer_deductions = breakdown.total_employer_deductions
        self.net_salary = breakdown.net_salary
        self.calculated_at = datetime.utcnow()
