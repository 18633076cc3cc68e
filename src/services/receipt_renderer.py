"""Receipt PDF rendering with ReportLab."""

import io
import logging
from dataclasses import dataclass
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)


@dataclass
class ReceiptDocument:
    """Everything printed on a receipt. Amounts are minor units."""

    folio: str
    receipt_id: str
    issued_at: datetime
    service_title: str
    client_name: str | None
    professional_name: str | None
    service_cents: int
    commission_cents: int
    iva_cents: int
    total_cents: int
    currency: str
    payment_reference: str | None = None


def format_money(cents: int, currency: str) -> str:
    """Format minor units as ``$1,234.56 MXN``."""
    sign = "-" if cents < 0 else ""
    major, minor = divmod(abs(int(cents)), 100)
    return f"{sign}${major:,}.{minor:02d} {currency.upper()}"


class ReceiptRenderer:
    """Render a receipt document to PDF bytes."""

    def __init__(self) -> None:
        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch
        self.content_width = self.page_width - (2 * self.margin)

        self.brand_color = colors.HexColor("#0e7c66")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def render(self, document: ReceiptDocument) -> bytes:
        """Build the PDF and return its bytes."""
        logger.info("Rendering receipt %s", document.folio)
        buffer = io.BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Comprobante {document.folio}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "ReceiptTitle",
            parent=styles["Heading1"],
            fontSize=22,
            textColor=self.brand_color,
            spaceAfter=6,
        )
        meta_style = ParagraphStyle(
            "ReceiptMeta",
            parent=styles["Normal"],
            fontSize=10,
            textColor=self.dark_gray,
            leading=14,
        )
        footer_style = ParagraphStyle(
            "ReceiptFooter",
            parent=styles["Normal"],
            fontSize=8,
            textColor=colors.grey,
        )

        story = [
            Paragraph("Handi - Comprobante de pago", title_style),
            Paragraph(f"Folio: <b>{document.folio}</b>", meta_style),
            Paragraph(f"Fecha: {document.issued_at.strftime('%Y-%m-%d %H:%M')} UTC", meta_style),
        ]
        if document.client_name:
            story.append(Paragraph(f"Cliente: {document.client_name}", meta_style))
        if document.professional_name:
            story.append(Paragraph(f"Profesional: {document.professional_name}", meta_style))
        story.append(Spacer(1, 0.3 * inch))

        rows = [
            ["Concepto", "Importe"],
            [document.service_title or "Servicio", format_money(document.service_cents, document.currency)],
            ["Comisión Handi", format_money(document.commission_cents, document.currency)],
            ["IVA", format_money(document.iva_cents, document.currency)],
            ["Total", format_money(document.total_cents, document.currency)],
        ]
        table = Table(rows, colWidths=[self.content_width * 0.65, self.content_width * 0.35])
        table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                    ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
                    ("BACKGROUND", (0, -1), (-1, -1), self.light_gray),
                    ("ALIGN", (1, 0), (1, -1), "RIGHT"),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cbd5e1")),
                    ("TOPPADDING", (0, 0), (-1, -1), 6),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(table)
        story.append(Spacer(1, 0.4 * inch))

        if document.payment_reference:
            story.append(Paragraph(f"Referencia de pago: {document.payment_reference}", footer_style))
        story.append(Paragraph(f"ID de comprobante: {document.receipt_id}", footer_style))

        doc.build(story)
        return buffer.getvalue()
