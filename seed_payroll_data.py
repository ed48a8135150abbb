from decimal import Decimal
from estate_payroll import create_app
from estate_payroll.extensions import db
from estate_payroll.models.worker import Worker
from estate_payroll.services.deduction_import import seed_defaults
from estate_payroll.services.pay_calculation_service import run_pay_calculation

app = create_app()

def get_or_create_worker(identity_number, name, nationality, worker_type):
    w = Worker.query.filter_by(identity_number=identity_number).first()
    if not w:
        w = Worker(identity_number=identity_number, name=name, nationality=nationality,
                   worker_type=worker_type, is_active=True)
        db.session.add(w)
        db.session.flush()
    return w

with app.app_context():
    month_year = "2025-06"

    res = seed_defaults()
    print(f"Deduction types: {res['created']} created, {res['skipped']} existing")

    # Demo estate crew: locals and foreign harvesters
    crew = [
        ("900101-10-5001", "Ahmad bin Ismail", "Malaysian", "harvester", Decimal("3000.00")),
        ("880512-08-6123", "Siti Aminah", "Malaysian", "sprayer", Decimal("1850.50")),
        ("B1234567", "Budi Santoso", "Indonesian", "harvester", Decimal("2200.00")),
        ("P7654321", "Ram Bahadur", "Nepali", "loader", Decimal("1640.00")),
    ]
    salaries = {}
    for ident, name, nat, wtype, gross in crew:
        w = get_or_create_worker(ident, name, nat, wtype)
        salaries[w.id] = gross
    db.session.commit()

    result = run_pay_calculation(month_year, salaries)
    pc = result.pay_calculation
    print(f"{month_year}: {result.processed} workers, {len(result.failures)} failures")
    for d in sorted(pc.details, key=lambda d: d.worker_id):
        print(f"  {d.worker.name:<20} gross {d.gross_salary:>9} deductions {d.employee_deductions:>8} net {d.net_salary:>9}")
    print(f"Totals: gross {pc.total_gross_salary}, employee {pc.total_deductions}, "
          f"employer {pc.total_employer_deductions}, net {pc.total_net_salary}")
