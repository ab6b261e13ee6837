"""
Tests for the /api/fiscal endpoints, including error cases
Receipts, reports, export and company settings
"""
import pytest
import json
import os
import re
from datetime import date, timedelta

# Configure environment for testing
os.environ['SESSION_SECRET'] = 'test_secret_key_for_testing_only'
os.environ['DATABASE_URL'] = 'sqlite:///:memory:'

from main import app, limiter
from models import db, FiscalReceiptRecord, FiscalSequence, SystemConfiguration
from receipt_store import ReceiptStore
from fiscal_errors import StoreReadError


@pytest.fixture(scope='module')
def test_app():
    """Configure the application for testing"""
    app.config['TESTING'] = True
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    app.config['WTF_CSRF_ENABLED'] = False  # Disable CSRF for tests
    app.config['SERVER_NAME'] = 'localhost'
    app.secret_key = 'test_secret_key_for_testing_only'
    limiter.enabled = False

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(test_app):
    """Test client"""
    return test_app.test_client()


@pytest.fixture
def app_context(test_app):
    """Application context with empty tables"""
    with test_app.app_context():
        db.session.query(FiscalReceiptRecord).delete()
        db.session.query(FiscalSequence).delete()
        db.session.query(SystemConfiguration).delete()
        db.session.commit()
        yield


ORDER = {
    'items': [
        {'name': 'Pizza', 'quantity': 2, 'price': 11.90, 'category': 'food'},
        {'name': 'Cola', 'quantity': 1, 'price': 3.50, 'category': 'beverage'}
    ],
    'cashier_name': 'Anna'
}


def post_receipt(client, order=ORDER):
    return client.post('/api/fiscal/receipts', data=json.dumps(order), content_type='application/json')


class TestCreateReceipt:
    """POST /api/fiscal/receipts"""

    def test_create_receipt(self, client, app_context):
        response = post_receipt(client)

        assert response.status_code == 201
        data = response.get_json()
        assert re.match(r'^\d{8}-000001$', data['receipt_number'])
        assert data['transaction_id'] == 'txn-1'
        assert data['total_gross'] == 27.3
        assert data['subtotal_net'] == 25.18
        assert data['total_vat'] == 2.12
        assert data['items'][0]['totalNet'] == 22.24
        assert data['items'][1]['vatRate'] == 0.19
        assert data['cashier_name'] == 'Anna'
        assert data['fiscal_memory_serial'] == 'TSE-SIM-2024-001'
        assert len(data['tse_signature']) == 32
        assert re.match(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}$', data['timestamp'])

    def test_numbers_increase(self, client, app_context):
        first = post_receipt(client).get_json()
        second = post_receipt(client).get_json()

        assert first['receipt_number'].endswith('-000001')
        assert second['receipt_number'].endswith('-000002')
        assert second['transaction_id'] == 'txn-2'

    def test_invalid_category(self, client, app_context):
        order = {'items': [{'name': 'Eis', 'quantity': 1, 'price': 3.0, 'category': 'dessert'}]}

        response = post_receipt(client, order)

        assert response.status_code == 400
        data = response.get_json()
        assert data['type'] == 'validation'
        assert data['field'] == 'category'
        assert 'error_id' in data
        assert FiscalReceiptRecord.query.count() == 0

        # Rejected order consumed no numbers
        assert post_receipt(client).get_json()['transaction_id'] == 'txn-1'

    def test_empty_order(self, client, app_context):
        response = post_receipt(client, {'items': []})
        assert response.status_code == 400
        assert response.get_json()['field'] == 'items'

    def test_missing_body(self, client, app_context):
        response = client.post('/api/fiscal/receipts', data='not json', content_type='application/json')
        assert response.status_code == 400


class TestReadReceipts:
    """Reading and reprinting receipts"""

    def test_list_receipts(self, client, app_context):
        post_receipt(client)
        post_receipt(client)

        data = client.get('/api/fiscal/receipts').get_json()

        assert data['count'] == 2
        assert {r['transaction_id'] for r in data['receipts']} == {'txn-1', 'txn-2'}

    def test_get_receipt(self, client, app_context):
        number = post_receipt(client).get_json()['receipt_number']

        response = client.get(f'/api/fiscal/receipts/{number}')

        assert response.status_code == 200
        assert response.get_json()['receipt_number'] == number

    def test_unknown_receipt(self, client, app_context):
        response = client.get('/api/fiscal/receipts/20240101-999999')
        assert response.status_code == 404
        assert response.get_json()['type'] == 'not_found'

    def test_thermal_text(self, client, app_context):
        created = post_receipt(client).get_json()

        response = client.get(f"/api/fiscal/receipts/{created['receipt_number']}/thermal?format=58mm")

        assert response.status_code == 200
        text = response.get_json()['receipt_text']
        assert 'Kassenbeleg' in text
        assert 'Synacto GmbH' in text
        assert created['receipt_number'] in text
        assert '27,30 €' in text
        assert 'TSE-SIM-2024-001' in text

    def test_pdf(self, client, app_context):
        number = post_receipt(client).get_json()['receipt_number']

        response = client.get(f'/api/fiscal/receipts/{number}/pdf')

        assert response.status_code == 200
        assert response.mimetype == 'application/pdf'
        assert response.data.startswith(b'%PDF')


class TestReports:
    """Daily and date range reports"""

    def test_daily_report_today(self, client, app_context):
        post_receipt(client)

        data = client.get('/api/fiscal/reports/daily').get_json()

        assert data['date'] == date.today().isoformat()
        assert data['transaction_count'] == 1
        assert data['total_sales'] == 27.3
        assert data['total_vat'] == 2.12
        assert data['vat_breakdown']['7%'] == {'net': 22.24, 'vat': 1.56, 'gross': 23.8}
        assert data['vat_breakdown']['19%'] == {'net': 2.94, 'vat': 0.56, 'gross': 3.5}

    def test_daily_report_empty_day(self, client, app_context):
        post_receipt(client)

        data = client.get('/api/fiscal/reports/daily?date=2000-01-01').get_json()

        assert data['transaction_count'] == 0
        assert data['total_sales'] == 0
        assert data['vat_breakdown'] == {}

    def test_daily_report_invalid_date(self, client, app_context):
        response = client.get('/api/fiscal/reports/daily?date=01.06.2024')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'date'

    def test_daily_report_download(self, client, app_context):
        post_receipt(client)
        today = date.today().isoformat()

        response = client.get(f'/api/fiscal/reports/daily/download?date={today}')

        assert response.status_code == 200
        assert f'tagesbericht-{today}.json' in response.headers['Content-Disposition']
        data = json.loads(response.data)
        assert data['date'] == today
        assert data['transaction_count'] == 1

    def test_range_report(self, client, app_context):
        post_receipt(client)
        start = (date.today() - timedelta(days=7)).isoformat()
        end = date.today().isoformat()

        data = client.get(f'/api/fiscal/reports/range?start={start}&end={end}').get_json()

        assert data['start'] == start
        assert data['transaction_count'] == 1

    def test_range_report_validation(self, client, app_context):
        assert client.get('/api/fiscal/reports/range?start=2024-06-01').status_code == 400
        response = client.get('/api/fiscal/reports/range?start=2024-06-02&end=2024-06-01')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'start'


class TestExport:
    """Receipt export"""

    def test_export_json(self, client, app_context):
        post_receipt(client)

        response = client.get('/api/fiscal/export?format=json')

        assert response.status_code == 200
        assert 'fiscal-receipts.json' in response.headers['Content-Disposition']
        rows = json.loads(response.data)
        assert rows[0]['transaction_id'] == 'txn-1'

    def test_export_csv_with_fields(self, client, app_context):
        post_receipt(client)

        response = client.get('/api/fiscal/export?format=csv&fields=receipt_number,total_gross')

        lines = response.data.decode('utf-8').split('\n')
        assert lines[0] == 'receipt_number,total_gross'
        assert lines[1].endswith(',"27.3"')

    def test_export_xlsx(self, client, app_context):
        post_receipt(client)

        response = client.get('/api/fiscal/export?format=xlsx')

        assert response.status_code == 200
        assert response.data[:2] == b'PK'

    def test_export_filters(self, client, app_context):
        post_receipt(client)
        post_receipt(client, dict(ORDER, payment_method='card'))

        rows = json.loads(client.get('/api/fiscal/export?payment_method=card').data)
        assert [r['payment_method'] for r in rows] == ['card']

        rows = json.loads(client.get('/api/fiscal/export?end_date=2000-01-01').data)
        assert rows == []

    def test_export_invalid_format(self, client, app_context):
        response = client.get('/api/fiscal/export?format=pdf')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'format'


class TestSettings:
    """Company data printed on receipts"""

    def test_update_and_read(self, client, app_context):
        response = client.put('/api/fiscal/settings', data=json.dumps({
            'company_name': 'Gasthaus Krone',
            'company_vat_id': 'de 987 654 321'
        }), content_type='application/json')

        assert response.status_code == 200
        settings = client.get('/api/fiscal/settings').get_json()
        assert settings['company_name'] == 'Gasthaus Krone'
        assert settings['company_vat_id'] == 'DE987654321'

    def test_invalid_vat_id(self, client, app_context):
        response = client.put('/api/fiscal/settings', data=json.dumps({'company_vat_id': 'AT123'}),
                              content_type='application/json')
        assert response.status_code == 400
        assert response.get_json()['field'] == 'company_vat_id'

    def test_unknown_setting(self, client, app_context):
        response = client.put('/api/fiscal/settings', data=json.dumps({'tip_rate': '10'}),
                              content_type='application/json')
        assert response.status_code == 400

    def test_company_name_on_receipt(self, client, app_context):
        client.put('/api/fiscal/settings', data=json.dumps({'company_name': 'Gasthaus Krone'}),
                   content_type='application/json')
        number = post_receipt(client).get_json()['receipt_number']

        text = client.get(f'/api/fiscal/receipts/{number}/thermal').get_json()['receipt_text']

        assert 'Gasthaus Krone' in text


class TestStoreFailures:
    """Store read errors become 500 responses"""

    def test_daily_report_read_error(self, client, app_context, monkeypatch):
        def unreadable(self, start, end):
            raise StoreReadError('Belege konnten nicht gelesen werden')

        monkeypatch.setattr(ReceiptStore, 'list_by_date_range', unreadable)

        response = client.get('/api/fiscal/reports/daily?date=2024-06-01')

        assert response.status_code == 500
        data = response.get_json()
        assert data['type'] == 'store'
        assert data['details'] == 'Belege konnten nicht gelesen werden'
        assert 'error_id' in data

    def test_receipt_list_read_error(self, client, app_context, monkeypatch):
        def unreadable(self):
            raise StoreReadError('Belege konnten nicht gelesen werden')

        monkeypatch.setattr(ReceiptStore, 'list_all', unreadable)

        response = client.get('/api/fiscal/receipts')

        assert response.status_code == 500
        assert response.get_json()['type'] == 'store'


class TestRateLimit:
    """The POS API is not held to the global hourly default"""

    def test_busy_till_not_throttled(self, client, app_context):
        limiter.enabled = True
        limiter.reset()
        try:
            statuses = [post_receipt(client).status_code for _ in range(110)]
            # Routes outside the POS API keep the global default
            index_statuses = [client.get('/').status_code for _ in range(101)]
        finally:
            limiter.enabled = False
            limiter.reset()

        assert statuses == [201] * 110
        assert index_statuses[:100] == [302] * 100
        assert index_statuses[100] == 429


def test_health(client):
    assert client.get('/health').get_json() == {'status': 'ok'}
