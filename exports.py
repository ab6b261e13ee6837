"""
Export of stored fiscal receipts (CSV / JSON / Excel) and of the daily report
"""
import io
import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment

EXPORT_FORMATS = ('json', 'csv', 'xlsx')

EXPORT_CONTENT_TYPES = {
    'json': 'application/json',
    'csv': 'text/csv',
    'xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
}


def _normalize_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat(timespec='milliseconds')
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value.replace('Z', '+00:00')).isoformat(timespec='milliseconds')
    return value


def _project(rows: List[Dict[str, Any]], fields: Optional[List[str]]) -> List[Dict[str, Any]]:
    if not fields:
        return rows
    return [{field: row.get(field) for field in fields} for row in rows]


def _csv_value(value: Any) -> str:
    if value is None:
        text = ''
    elif isinstance(value, (list, dict)):
        text = json.dumps(value, ensure_ascii=False)
    elif isinstance(value, bool):
        text = 'true' if value else 'false'
    else:
        text = str(value)
    return '"' + text.replace('"', '""') + '"'


def to_csv(rows: List[Dict[str, Any]], fields: Optional[List[str]] = None) -> str:
    """
    Every value double-quoted, comma separated, header row from fields or
    from the first record's keys. No rows -> empty string.
    """
    if not rows:
        return ''
    header = list(fields) if fields else list(rows[0].keys())
    lines = [','.join(header)]
    for row in rows:
        lines.append(','.join(_csv_value(row.get(key)) for key in header))
    return '\n'.join(lines)


def to_json(rows: List[Dict[str, Any]], fields: Optional[List[str]] = None) -> str:
    normalized = [{**row, 'timestamp': _normalize_timestamp(row.get('timestamp'))} for row in rows]
    return json.dumps(_project(normalized, fields), indent=2, ensure_ascii=False)


def to_xlsx(rows: List[Dict[str, Any]], fields: Optional[List[str]] = None) -> bytes:
    """Excel workbook with one sheet 'Kassenbelege'"""
    wb = Workbook()
    ws = wb.active
    ws.title = 'Kassenbelege'

    header = list(fields) if fields else (list(rows[0].keys()) if rows else [])

    header_font = Font(bold=True, color='FFFFFF')
    header_fill = PatternFill(start_color='1F4E78', end_color='1F4E78', fill_type='solid')
    for col_num, name in enumerate(header, 1):
        cell = ws.cell(row=1, column=col_num, value=name)
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal='center', vertical='center')

    for row_num, row in enumerate(rows, 2):
        for col_num, key in enumerate(header, 1):
            value = row.get(key)
            if isinstance(value, (list, dict)):
                value = json.dumps(value, ensure_ascii=False)
            elif key == 'timestamp':
                value = _normalize_timestamp(value)
            ws.cell(row=row_num, column=col_num, value=value)

    for col_num, name in enumerate(header, 1):
        ws.column_dimensions[ws.cell(row=1, column=col_num).column_letter].width = max(12, len(name) + 4)

    output = io.BytesIO()
    wb.save(output)
    return output.getvalue()


def export_fiscal_receipts(rows: List[Dict[str, Any]], fmt: str = 'json',
                           fields: Optional[List[str]] = None):
    """
    Format stored receipt rows (persistence shape) for download

    Returns:
        str for csv/json, bytes for xlsx
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f'Unbekanntes Exportformat: {fmt}')
    if fmt == 'csv':
        return to_csv(rows, fields)
    if fmt == 'xlsx':
        return to_xlsx(rows, fields)
    return to_json(rows, fields)


def daily_report_filename(day: date) -> str:
    return f"tagesbericht-{day.isoformat()}.json"


def daily_report_json(day: date, report_data: Dict[str, Any]) -> str:
    """Tagesbericht file content: {'date': 'YYYY-MM-DD', ...report}"""
    return json.dumps({'date': day.isoformat(), **report_data}, indent=2, ensure_ascii=False)
