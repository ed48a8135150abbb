from estate_payroll import create_app

app = create_app()
