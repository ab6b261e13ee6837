from flask import Blueprint, request, jsonify, send_file, current_app, make_response
from datetime import date
import io
import os
import tempfile
import logging

from german_compliance import GermanComplianceService, FiscalIdGenerator, day_bounds
from receipt_store import ReceiptStore, DatabaseSequence, receipt_to_row
from receipt_generator import generate_pdf_receipt, generate_thermal_receipt_text
from exports import (
    EXPORT_FORMATS, EXPORT_CONTENT_TYPES, export_fiscal_receipts,
    daily_report_filename, daily_report_json
)
from fiscal_errors import InvalidCategory, InvalidOrder, ReceiptPersistenceFailed, StoreError
from utils import (
    error_response, log_success, parse_date_param,
    get_company_settings, update_company_setting
)

# Configure logging
logger = logging.getLogger(__name__)

bp = Blueprint('fiscal', __name__, url_prefix='/api/fiscal')


def get_compliance_service() -> GermanComplianceService:
    """Service wired to the database store and the durable receipt/transaction sequences"""
    id_generator = FiscalIdGenerator(
        sequence=DatabaseSequence(),
        fiscal_memory_serial=current_app.config['FISCAL_MEMORY_SERIAL']
    )
    return GermanComplianceService(store=ReceiptStore(), id_generator=id_generator)


def _store_error(e: StoreError, message: str, **log_context):
    return error_response(
        error_type='store',
        message=message,
        details=str(e),
        status_code=500,
        log_context=log_context
    )


def _find_receipt(receipt_number: str):
    """Returns (receipt, None) or (None, error response)"""
    try:
        receipt = ReceiptStore().get_by_receipt_number(receipt_number)
    except StoreError as e:
        return None, _store_error(e, 'Beleg konnte nicht gelesen werden', receipt_number=receipt_number)

    if receipt is None:
        return None, error_response(
            error_type='not_found',
            message=f'Beleg {receipt_number} nicht gefunden',
            status_code=404,
            log_context={'receipt_number': receipt_number}
        )
    return receipt, None


@bp.route('/receipts', methods=['POST'])
def create_receipt():
    """Create the fiscal receipt for a finalized order"""
    order = request.get_json(silent=True)
    if not isinstance(order, dict):
        return error_response(
            error_type='validation',
            message='Bestelldaten fehlen',
            details='Der Request-Body muss ein JSON-Objekt mit "items" sein'
        )

    service = get_compliance_service()
    try:
        receipt = service.create_fiscal_receipt(order)
    except InvalidCategory as e:
        return error_response(
            error_type='validation',
            message='Ungültige Produktkategorie',
            details=str(e),
            field='category'
        )
    except InvalidOrder as e:
        return error_response(
            error_type='validation',
            message='Ungültige Bestellung',
            details=str(e),
            field=e.field
        )
    except ReceiptPersistenceFailed as e:
        return _store_error(e, 'Beleg konnte nicht gespeichert werden',
                            receipt_number=e.receipt.receipt_number if e.receipt else None)
    except StoreError as e:
        return _store_error(e, 'Belegnummer konnte nicht vergeben werden')

    log_success(
        operation='receipt_created',
        message=f'Kassenbeleg {receipt.receipt_number} erstellt',
        context={
            'receipt_number': receipt.receipt_number,
            'transaction_id': receipt.transaction_id,
            'total_gross': float(receipt.total_gross)
        }
    )
    return jsonify(receipt_to_row(receipt)), 201


@bp.route('/receipts')
def list_receipts():
    """All stored receipts, newest first"""
    try:
        receipts = get_compliance_service().get_stored_receipts()
    except StoreError as e:
        return _store_error(e, 'Belege konnten nicht gelesen werden')

    return jsonify({
        'count': len(receipts),
        'receipts': [receipt_to_row(receipt) for receipt in receipts]
    })


@bp.route('/receipts/<receipt_number>')
def get_receipt(receipt_number):
    receipt, error = _find_receipt(receipt_number)
    if error:
        return error
    return jsonify(receipt_to_row(receipt))


@bp.route('/receipts/<receipt_number>/thermal')
def receipt_thermal(receipt_number):
    """Thermal printer text of a Kassenbeleg"""
    receipt, error = _find_receipt(receipt_number)
    if error:
        return error

    receipt_format = request.args.get('format')
    if receipt_format not in ['58mm', '80mm']:
        receipt_format = None  # company setting

    return jsonify({
        'success': True,
        'receipt_text': generate_thermal_receipt_text(receipt, receipt_format),
        'receipt_number': receipt.receipt_number
    })


@bp.route('/receipts/<receipt_number>/pdf')
def receipt_pdf(receipt_number):
    """Generate and download the Kassenbeleg as PDF"""
    receipt, error = _find_receipt(receipt_number)
    if error:
        return error

    fd, pdf_path = tempfile.mkstemp(suffix='.pdf')
    os.close(fd)
    try:
        generate_pdf_receipt(receipt, pdf_path)
        with open(pdf_path, 'rb') as pdf_file:
            pdf_bytes = pdf_file.read()
    except Exception as e:
        logger.exception(f"Error generating PDF for receipt {receipt_number}")
        return error_response(
            error_type='server',
            message='PDF konnte nicht erstellt werden',
            details=str(e),
            status_code=500,
            log_context={'receipt_number': receipt_number}
        )
    finally:
        os.remove(pdf_path)

    return send_file(
        io.BytesIO(pdf_bytes),
        as_attachment=True,
        download_name=f'kassenbeleg_{receipt.receipt_number}.pdf',
        mimetype='application/pdf'
    )


def _report_day():
    """Returns (day, None) or (None, error response); defaults to today"""
    parsed = parse_date_param(request.args.get('date'), 'date')
    if not parsed['valid']:
        return None, error_response(error_type='validation', message=parsed['message'], field='date')
    return parsed['value'] or date.today(), None


@bp.route('/reports/daily')
def daily_report():
    """Tagesbericht: totals and VAT breakdown for one day"""
    day, error = _report_day()
    if error:
        return error

    try:
        report = get_compliance_service().generate_daily_report(day)
    except StoreError as e:
        return _store_error(e, 'Tagesbericht konnte nicht erstellt werden', date=day.isoformat())

    return jsonify({'date': day.isoformat(), **report.to_dict()})


@bp.route('/reports/daily/download')
def download_daily_report():
    """Tagesbericht as downloadable JSON file (tagesbericht-YYYY-MM-DD.json)"""
    day, error = _report_day()
    if error:
        return error

    try:
        report = get_compliance_service().generate_daily_report(day)
    except StoreError as e:
        return _store_error(e, 'Tagesbericht konnte nicht erstellt werden', date=day.isoformat())

    response = make_response(daily_report_json(day, report.to_dict()))
    response.headers['Content-Type'] = 'application/json'
    response.headers['Content-Disposition'] = f'attachment; filename={daily_report_filename(day)}'
    return response


@bp.route('/reports/range')
def range_report():
    """Totals and VAT breakdown between two days (inclusive)"""
    start = parse_date_param(request.args.get('start'), 'start')
    end = parse_date_param(request.args.get('end'), 'end')

    for parsed, field in ((start, 'start'), (end, 'end')):
        if not parsed['valid']:
            return error_response(error_type='validation', message=parsed['message'], field=field)
        if parsed['value'] is None:
            return error_response(error_type='validation', message=f'{field} ist erforderlich', field=field)

    if start['value'] > end['value']:
        return error_response(
            error_type='validation',
            message='start darf nicht nach end liegen',
            field='start'
        )

    try:
        report = get_compliance_service().generate_range_report(start['value'], end['value'])
    except StoreError as e:
        return _store_error(e, 'Bericht konnte nicht erstellt werden')

    return jsonify({
        'start': start['value'].isoformat(),
        'end': end['value'].isoformat(),
        **report.to_dict()
    })


@bp.route('/export')
def export_receipts():
    """Export stored receipts as json, csv or xlsx"""
    fmt = (request.args.get('format') or 'json').lower()
    if fmt not in EXPORT_FORMATS:
        return error_response(
            error_type='validation',
            message=f'Format muss eines von {", ".join(EXPORT_FORMATS)} sein',
            field='format'
        )

    start = parse_date_param(request.args.get('start_date'), 'start_date')
    end = parse_date_param(request.args.get('end_date'), 'end_date')
    for parsed, field in ((start, 'start_date'), (end, 'end_date')):
        if not parsed['valid']:
            return error_response(error_type='validation', message=parsed['message'], field=field)

    fields = [f.strip() for f in request.args.get('fields', '').split(',') if f.strip()] or None
    payment_method = request.args.get('payment_method') or None

    start_dt = end_dt = None
    if start['value']:
        start_dt, _ = day_bounds(start["value"], start["value"])
    if end['value']:
        _, end_dt = day_bounds(end["value"], end["value"])

    try:
        receipts = ReceiptStore().list_filtered(start=start_dt, end=end_dt, payment_method=payment_method)
    except StoreError as e:
        return _store_error(e, 'Belege konnten nicht exportiert werden')

    exported = export_fiscal_receipts([receipt_to_row(r) for r in receipts], fmt, fields)

    log_success(
        operation='receipts_exported',
        message=f'{len(receipts)} Belege als {fmt} exportiert',
        context={'format': fmt, 'records': len(receipts)}
    )

    response = make_response(exported)
    response.headers['Content-Type'] = EXPORT_CONTENT_TYPES[fmt]
    response.headers['Content-Disposition'] = f'attachment; filename=fiscal-receipts.{fmt}'
    return response


@bp.route('/settings')
def get_settings():
    """Company data printed on the Kassenbeleg"""
    result = get_company_settings()
    if not result['success']:
        return error_response(error_type='server', message=result['message'], status_code=500)
    return jsonify(result['settings'])


@bp.route('/settings', methods=['PUT'])
def update_settings():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return error_response(error_type='validation', message='Keine Einstellungen übermittelt')

    for key, value in data.items():
        result = update_company_setting(key, '' if value is None else str(value))
        if not result['success']:
            return error_response(error_type='validation', message=result['message'], field=key)

    return jsonify(get_company_settings()['settings'])
