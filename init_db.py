"""
Initialize the fiscal receipt database: tables, TSE sequences and company settings
"""
from main import app, db
import models
from utils import initialize_company_settings


def init_database(reset=False):
    with app.app_context():
        if reset:
            db.drop_all()
        db.create_all()

        # Receipt and transaction counters both start at 1
        for name in ('receipt', 'transaction'):
            if not models.FiscalSequence.query.filter_by(name=name).first():
                db.session.add(models.FiscalSequence(name=name, current_number=1))
        db.session.commit()

        result = initialize_company_settings()

        print("✅ Datenbank initialisiert")
        print("🧾 Beleg- und Transaktionszähler angelegt")
        print(f"🏢 {result['message']}")


if __name__ == '__main__':
    import sys
    init_database(reset='--reset' in sys.argv)
