"""
Return Slip PDF Service

Generates the printable slip handed to the customer for a sale return.
Uses ReportLab for PDF generation.
"""

from decimal import Decimal
from io import BytesIO
import logging

from django.utils import timezone
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)


class ReturnSlipPDFService:
    """
    Service for generating return slips.

    Provides methods to:
    - Render a SaleReturn with its items and totals
    - Format money and quantities
    """

    @staticmethod
    def generate_return_slip(sale_return) -> BytesIO:
        """
        Render the slip for a sale return.

        Args:
            sale_return: SaleReturn instance

        Returns:
            BytesIO object containing the PDF
        """
        logger.info(f"Generating return slip for return {sale_return.pk}")

        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=54,
            leftMargin=54,
            topMargin=54,
            bottomMargin=18,
        )
        elements = []

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            'SlipTitle',
            parent=styles['Heading1'],
            fontSize=20,
            textColor=colors.HexColor('#1a202c'),
            spaceAfter=20,
            alignment=TA_CENTER
        )
        heading_style = ParagraphStyle(
            'SlipHeading',
            parent=styles['Heading2'],
            fontSize=14,
            textColor=colors.HexColor('#2d3748'),
            spaceAfter=10,
            spaceBefore=10
        )

        elements.append(Paragraph(f"Return Slip<br/>{sale_return.store.name}", title_style))
        elements.append(Spacer(1, 12))

        created_by = sale_return.created_by.get_username() if sale_return.created_by else '-'
        metadata_data = [
            ['Return:', str(sale_return.pk)],
            ['Sale:', str(sale_return.sale_id)],
            ['Date:', timezone.localtime(sale_return.created_at).strftime('%Y-%m-%d %H:%M:%S')],
            ['Processed by:', created_by],
            ['Reason:', sale_return.reason or '-'],
        ]
        metadata_table = Table(metadata_data, colWidths=[1.5*inch, 4.8*inch])
        metadata_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (0, -1), colors.HexColor('#f7fafc')),
            ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#2d3748')),
            ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#e2e8f0')),
        ]))
        elements.append(metadata_table)
        elements.append(Spacer(1, 16))

        elements.append(Paragraph("Returned Items", heading_style))
        items_data = [['Product', 'Qty', 'Unit (USD)', 'Discount (USD)', 'Total (USD)', 'Total (Bs)']]
        for item in sale_return.items.select_related('product', 'variant'):
            name = item.product.name
            if item.variant_id:
                name = f"{name} / {item.variant.name}"
            items_data.append([
                name[:40],
                ReturnSlipPDFService._format_qty(item.qty),
                ReturnSlipPDFService._format_money(item.unit_price_usd),
                ReturnSlipPDFService._format_money(item.discount_usd),
                ReturnSlipPDFService._format_money(item.total_usd),
                ReturnSlipPDFService._format_money(item.total_bs),
            ])
        items_table = Table(
            items_data,
            colWidths=[2.1*inch, 0.6*inch, 0.9*inch, 1.0*inch, 0.9*inch, 0.9*inch]
        )
        items_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4a5568')),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 8),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#cbd5e0')),
        ]))
        elements.append(items_table)
        elements.append(Spacer(1, 16))

        elements.append(Paragraph("Totals", heading_style))
        totals_data = [
            ['', 'USD', 'Bs'],
            ['Subtotal',
             ReturnSlipPDFService._format_money(sale_return.subtotal_usd),
             ReturnSlipPDFService._format_money(sale_return.subtotal_bs)],
            ['Discount',
             ReturnSlipPDFService._format_money(sale_return.discount_usd),
             ReturnSlipPDFService._format_money(sale_return.discount_bs)],
            ['Refund total',
             ReturnSlipPDFService._format_money(sale_return.total_usd),
             ReturnSlipPDFService._format_money(sale_return.total_bs)],
        ]
        totals_table = Table(totals_data, colWidths=[2*inch, 1.5*inch, 1.5*inch])
        totals_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#edf2f7')),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (1, 0), (-1, -1), 'RIGHT'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#cbd5e0')),
        ]))
        elements.append(totals_table)

        doc.build(elements)

        buffer.seek(0)
        logger.info(f"Successfully generated return slip for return {sale_return.pk}")
        return buffer

    @staticmethod
    def _format_money(amount) -> str:
        return f"{Decimal(amount or 0):,.2f}"

    @staticmethod
    def _format_qty(qty) -> str:
        qty = Decimal(qty or 0)
        if qty == qty.to_integral_value():
            return f"{qty:.0f}"
        return f"{qty.normalize():f}"
