"""
German fiscal receipt (Kassenbeleg) generator

Renders stored fiscal receipts as PDF (reportlab) or as plain text for
58mm/80mm thermal printers, including the TSE block required on
receipts under the KassenSichV.
"""

import os
from typing import Dict, List, Optional

from reportlab.lib.units import mm
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer
from reportlab.lib import colors

from german_compliance import FiscalReceipt, vat_rate_label
from utils import format_currency_eur, get_company_info_for_receipt

PAYMENT_METHOD_LABELS = {
    'cash': 'Bar',
    'card': 'Karte',
    'other': 'Sonstige'
}

# Only the beginning of the signature fits on the printed receipt
SIGNATURE_PREVIEW_LENGTH = 16


class GermanReceiptGenerator:
    """
    Kassenbeleg generator
    Sized for 58mm and 80mm thermal printers
    """

    def __init__(self, format_type='80mm', company_info: Optional[Dict[str, str]] = None):
        if format_type == '58mm':
            self.page_size = (58 * mm, 200 * mm)
            self.margin = 2 * mm
            self.text_width = 32
        else:
            self.page_size = (80 * mm, 200 * mm)
            self.margin = 3 * mm
            self.text_width = 40

        self.format_type = format_type
        self.company_info = company_info
        self.styles = self._create_styles()

    def _get_company_info(self) -> Dict[str, str]:
        if self.company_info is None:
            self.company_info = get_company_info_for_receipt()
        return self.company_info

    def _create_styles(self):
        styles = getSampleStyleSheet()

        styles.add(ParagraphStyle(
            name='CompanyName',
            fontSize=13,
            alignment=TA_CENTER,
            fontName='Helvetica-Bold',
            spaceAfter=4
        ))
        styles.add(ParagraphStyle(
            name='CompanyInfo',
            fontSize=7,
            alignment=TA_CENTER,
            fontName='Helvetica'
        ))
        styles.add(ParagraphStyle(
            name='ReceiptHeader',
            fontSize=10,
            alignment=TA_CENTER,
            fontName='Helvetica-Bold',
            spaceBefore=4,
            spaceAfter=4
        ))
        styles.add(ParagraphStyle(
            name='Item',
            fontSize=8,
            alignment=TA_CENTER,
            fontName='Helvetica'
        ))
        styles.add(ParagraphStyle(
            name='Total',
            fontSize=10,
            alignment=TA_CENTER,
            fontName='Helvetica-Bold',
            textColor=colors.black,
            spaceBefore=4,
            spaceAfter=4
        ))
        styles.add(ParagraphStyle(
            name='Footer',
            fontSize=7,
            alignment=TA_CENTER,
            fontName='Helvetica'
        ))
        return styles

    # ----------- PDF RECEIPT -----------

    def generate_fiscal_receipt(self, receipt: FiscalReceipt, output_path: Optional[str] = None) -> str:
        company_info = self._get_company_info()

        if not output_path:
            filename = f"kassenbeleg_{receipt.receipt_number}.pdf"
            output_path = os.path.join('static', 'receipts', filename)
            os.makedirs(os.path.dirname(output_path), exist_ok=True)

        doc = SimpleDocTemplate(
            output_path,
            pagesize=self.page_size,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin
        )

        content = []
        content.extend(self._build_company_header(company_info))
        content.extend(self._build_receipt_details(receipt))
        content.extend(self._build_items_list(receipt))
        content.extend(self._build_totals_section(receipt))
        content.extend(self._build_tse_info(receipt))
        content.extend(self._build_footer(company_info))

        doc.build(content)
        return output_path

    def _build_company_header(self, company_info: Dict[str, str]) -> List:
        content = [
            Paragraph("Kassenbeleg", self.styles['ReceiptHeader']),
            Paragraph(company_info['name'], self.styles['CompanyName'])
        ]

        for field in ['address', 'city', 'vat_id']:
            if company_info.get(field):
                label = "USt-IdNr: " if field == 'vat_id' else ""
                content.append(Paragraph(f"{label}{company_info[field]}", self.styles['CompanyInfo']))

        content.append(Spacer(1, 3*mm))
        return content

    def _build_receipt_details(self, receipt: FiscalReceipt) -> List:
        return [
            Paragraph(f"Beleg-Nr: {receipt.receipt_number}", self.styles['Item']),
            Paragraph(f"Datum/Zeit: {receipt.timestamp.strftime('%d.%m.%Y %H:%M:%S')}", self.styles['Item']),
            Paragraph(f"Kassierer: {receipt.cashier_name or 'System'}", self.styles['Item']),
            Paragraph(f"Zahlungsart: {PAYMENT_METHOD_LABELS.get(receipt.payment_method, receipt.payment_method)}",
                      self.styles['Item']),
        ]

    def _build_items_list(self, receipt: FiscalReceipt) -> List:
        content = [Paragraph("-" * self.text_width, self.styles['Item'])]

        max_name_len = 20 if self.format_type == '58mm' else 25
        for item in receipt.items:
            name = item.name
            if len(name) > max_name_len:
                name = name[:max_name_len-3] + "..."

            content.append(Paragraph(f"{name} = {format_currency_eur(item.total_gross)}", self.styles['Item']))
            content.append(Paragraph(
                f"    {item.quantity}x {format_currency_eur(item.unit_price)} - MwSt {vat_rate_label(item.vat_rate)}",
                self.styles['Item']))
            content.append(Paragraph(
                f"    Netto: {format_currency_eur(item.total_net)} MwSt: {format_currency_eur(item.total_vat)}",
                self.styles['Item']))

        content.append(Paragraph("-" * self.text_width, self.styles['Item']))
        return content

    def _build_totals_section(self, receipt: FiscalReceipt) -> List:
        return [
            Paragraph(f"<b>SUMME BRUTTO: {format_currency_eur(receipt.total_gross)}</b>", self.styles['Total']),
            Paragraph(f"davon Netto: {format_currency_eur(receipt.subtotal_net)}", self.styles['Item']),
            Paragraph(f"davon MwSt: {format_currency_eur(receipt.total_vat)}", self.styles['Item']),
        ]

    def _build_tse_info(self, receipt: FiscalReceipt) -> List:
        return [
            Paragraph("TSE-DATEN", self.styles['ReceiptHeader']),
            Paragraph(f"Seriennummer: {receipt.fiscal_memory_serial}", self.styles['Footer']),
            Paragraph(f"Transaktion: {receipt.transaction_id}", self.styles['Footer']),
            Paragraph(f"Signatur: {receipt.tse_signature[:SIGNATURE_PREVIEW_LENGTH]}...", self.styles['Footer']),
        ]

    def _build_footer(self, company_info: Dict[str, str]) -> List:
        content = [Spacer(1, 2*mm)]
        if company_info.get('message'):
            content.append(Paragraph(company_info['message'], self.styles['Footer']))
        if company_info.get('footer'):
            content.append(Paragraph(company_info['footer'], self.styles['Footer']))
        return content

    # ----------- PLAIN TEXT FOR THERMAL PRINTERS -----------

    def generate_thermal_receipt(self, receipt: FiscalReceipt) -> str:
        company_info = self._get_company_info()
        width = self.text_width
        r = []
        c = lambda t: t.center(width)
        line = lambda label, value: f"{label:<{width - 14}}{value:>14}"

        r.append("=" * width)
        r.append(c("Kassenbeleg"))
        r.append(c(company_info['name']))
        if company_info.get('address'): r.append(c(company_info['address']))
        if company_info.get('city'): r.append(c(company_info['city']))
        if company_info.get('vat_id'): r.append(c(f"USt-IdNr: {company_info['vat_id']}"))
        r.append("=" * width)

        r.append(f"Beleg-Nr: {receipt.receipt_number}")
        r.append(f"Datum/Zeit: {receipt.timestamp.strftime('%d.%m.%Y %H:%M:%S')}")
        r.append(f"Kassierer: {receipt.cashier_name or 'System'}")
        r.append(f"Zahlungsart: {PAYMENT_METHOD_LABELS.get(receipt.payment_method, receipt.payment_method)}")

        r.append("-" * width)
        r.append("ARTIKEL")
        r.append("-" * width)

        name_width = width - 14
        for item in receipt.items:
            r.append(line(item.name[:name_width - 1], format_currency_eur(item.total_gross)))
            r.append(line(f"  {item.quantity}x {format_currency_eur(item.unit_price)}",
                          f"MwSt {vat_rate_label(item.vat_rate)}"))
            r.append(line(f"  Netto: {format_currency_eur(item.total_net)}",
                          f"{format_currency_eur(item.total_vat)}"))

        r.append("-" * width)
        r.append(line("SUMME BRUTTO:", format_currency_eur(receipt.total_gross)))
        r.append(line("davon Netto:", format_currency_eur(receipt.subtotal_net)))
        r.append(line("davon MwSt:", format_currency_eur(receipt.total_vat)))
        r.append("=" * width)

        r.append("TSE-DATEN:")
        r.append(f"Seriennummer: {receipt.fiscal_memory_serial}")
        r.append(f"Transaktion: {receipt.transaction_id}")
        r.append(f"Signatur: {receipt.tse_signature[:SIGNATURE_PREVIEW_LENGTH]}...")
        r.append("-" * width)

        if company_info.get('message'): r.append(c(company_info['message']))
        if company_info.get('footer'): r.append(c(company_info['footer']))
        r.append("=" * width)
        return "\n".join(r)


# Helper functions for easy use
def generate_pdf_receipt(receipt: FiscalReceipt, output_path: Optional[str] = None) -> str:
    """
    Convenience function to generate a PDF Kassenbeleg

    Args:
        receipt: Stored fiscal receipt
        output_path: Optional output path

    Returns:
        Path to generated PDF
    """
    company_info = get_company_info_for_receipt()
    generator = GermanReceiptGenerator(format_type=company_info.get('format', '80mm'), company_info=company_info)
    return generator.generate_fiscal_receipt(receipt, output_path)


def generate_thermal_receipt_text(receipt: FiscalReceipt, format_type: Optional[str] = None) -> str:
    """
    Convenience function to generate thermal receipt text

    Args:
        receipt: Stored fiscal receipt
        format_type: '58mm' or '80mm'; taken from the company settings when omitted

    Returns:
        Formatted text for thermal printing
    """
    company_info = get_company_info_for_receipt()
    generator = GermanReceiptGenerator(format_type=format_type or company_info.get('format', '80mm'),
                                       company_info=company_info)
    return generator.generate_thermal_receipt(receipt)
