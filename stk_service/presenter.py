"""
Receipt PDF rendering

One A4 page per receipt:
- Header band with brand and loan account
- Status banner coloured by receipt status
- Transaction details, date and status note
- Retry banner for failed attempts, information block and footer
"""

from datetime import datetime
from io import BytesIO
from typing import List, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

PRIMARY_COLOR = colors.HexColor("#225AAC")
SUCCESS_COLOR = colors.HexColor("#10b981")
FAILED_COLOR = colors.HexColor("#ef4444")
PENDING_COLOR = colors.HexColor("#f59e0b")

FAILED_STATUSES = ("cancelled", "error", "stk_failed")

# (banner text, banner colour, note background, note text colour)
STATUS_STYLES = {
    "processing": ("PROCESSING", SUCCESS_COLOR, "#f0fdf4", "#166534"),
    "success": ("COMPLETED", SUCCESS_COLOR, "#f0fdf4", "#166534"),
    # Recognised for display only; nothing in the payment flow assigns it.
    "loan_released": ("DISBURSED", SUCCESS_COLOR, "#f0fdf4", "#166534"),
    "pending": ("PENDING", PENDING_COLOR, "#fffbeb", "#92400e"),
}
FAILED_STYLE = ("FAILED", FAILED_COLOR, "#fef2f2", "#991b1b")


def status_style(status) -> Tuple[str, colors.Color, str, str]:
    if status in FAILED_STATUSES:
        return FAILED_STYLE
    return STATUS_STYLES.get(status, ("COMPLETED", SUCCESS_COLOR, "#f0fdf4", "#166534"))


def format_kes(value) -> str:
    try:
        return f"KES {float(value):,.0f}"
    except (TypeError, ValueError):
        return "KES N/A"


class ReceiptPDFRenderer:
    """Render a stored receipt as a PDF document"""

    def __init__(self, settings):
        self.settings = settings
        self.margin = 0.55 * inch
        self.content_width = A4[0] - 2 * self.margin
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        self.styles.add(ParagraphStyle(
            name="BrandTitle",
            parent=self.styles["Heading1"],
            fontName="Helvetica-Bold",
            fontSize=24,
            alignment=TA_CENTER,
            textColor=colors.white,
            leading=30,
        ))
        self.styles.add(ParagraphStyle(
            name="BrandSubtitle",
            parent=self.styles["Normal"],
            fontSize=11,
            alignment=TA_CENTER,
            textColor=colors.white,
            leading=15,
        ))
        self.styles.add(ParagraphStyle(
            name="Banner",
            parent=self.styles["Normal"],
            fontName="Helvetica-Bold",
            fontSize=20,
            alignment=TA_CENTER,
            textColor=colors.white,
            leading=24,
        ))
        self.styles.add(ParagraphStyle(
            name="SectionHeader",
            parent=self.styles["Heading2"],
            fontSize=13,
            spaceBefore=14,
            spaceAfter=6,
            textColor=PRIMARY_COLOR,
        ))
        self.styles.add(ParagraphStyle(
            name="NoteText",
            parent=self.styles["Normal"],
            fontSize=9,
            leading=12,
        ))
        self.styles.add(ParagraphStyle(
            name="Footer",
            parent=self.styles["Normal"],
            fontSize=8,
            alignment=TA_CENTER,
            textColor=colors.HexColor("#9ca3af"),
        ))

    def render(self, receipt) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Receipt {receipt.reference}",
        )

        story = []
        story.extend(self._header())
        story.extend(self._status_banner(receipt))
        story.extend(self._details(receipt))
        story.extend(self._status_note(receipt))
        if receipt.status in FAILED_STATUSES:
            story.extend(self._retry_banner())
        story.extend(self._information(receipt))
        story.extend(self._footer())

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        return pdf_bytes

    def _band(self, rows: List[list], background, padding=10) -> Table:
        table = Table(rows, colWidths=[self.content_width])
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, -1), background),
            ("TOPPADDING", (0, 0), (-1, -1), padding),
            ("BOTTOMPADDING", (0, 0), (-1, -1), padding),
        ]))
        return table

    def _header(self) -> List:
        brand = self.settings.brand_name
        rows = [
            [Paragraph(escape(brand.upper()), self.styles["BrandTitle"])],
            [Paragraph("Official Loan Withdrawal Receipt", self.styles["BrandSubtitle"])],
            [Paragraph(f"Account: {self.settings.loan_account}", self.styles["BrandSubtitle"])],
        ]
        return [self._band(rows, PRIMARY_COLOR, padding=4), Spacer(1, 16)]

    def _status_banner(self, receipt) -> List:
        text, color, _, _ = status_style(receipt.status)
        return [
            self._band([[Paragraph(text, self.styles["Banner"])]], color, padding=12),
            Spacer(1, 10),
        ]

    def _details(self, receipt) -> List:
        rows = [
            ["Account Number", self.settings.loan_account],
            ["Reference Number", receipt.reference or "N/A"],
            ["Transaction ID", receipt.transaction_id or "N/A"],
            ["M-Pesa Receipt", receipt.transaction_code or "Pending"],
            ["Processing Fee", format_kes(receipt.amount)],
            ["Loan Amount", format_kes(receipt.loan_amount)],
            ["Phone Number", receipt.phone or "N/A"],
            ["Customer Name", receipt.customer_name or "N/A"],
            ["Date & Time", self._format_timestamp(receipt.timestamp)],
        ]
        if receipt.original_reference:
            rows.insert(2, ["Retry Of", receipt.original_reference])

        table = Table(rows, colWidths=[2.2 * inch, self.content_width - 2.2 * inch])
        table.setStyle(TableStyle([
            ("FONTNAME", (0, 0), (0, -1), "Helvetica"),
            ("FONTNAME", (1, 0), (1, -1), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 10),
            ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#6b7280")),
            ("TEXTCOLOR", (1, 0), (1, -1), colors.HexColor("#111827")),
            ("LINEBELOW", (0, 0), (-1, -2), 0.5, colors.HexColor("#e5e7eb")),
            ("BOX", (0, 0), (-1, -1), 1, colors.HexColor("#e5e7eb")),
            ("TOPPADDING", (0, 0), (-1, -1), 6),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ("LEFTPADDING", (0, 0), (-1, -1), 10),
        ]))
        return [Paragraph("TRANSACTION DETAILS", self.styles["SectionHeader"]), table]

    def _format_timestamp(self, value) -> str:
        if isinstance(value, datetime):
            return value.strftime("%A, %d %B %Y %H:%M:%S UTC")
        return "N/A"

    def _status_note(self, receipt) -> List:
        if not receipt.status_note:
            return []
        _, _, background, text_color = status_style(receipt.status)
        style = ParagraphStyle(
            name="StatusNoteText",
            parent=self.styles["NoteText"],
            textColor=colors.HexColor(text_color),
        )
        rows = [
            [Paragraph("<b>STATUS NOTE</b>", style)],
            [Paragraph(escape(receipt.status_note), style)],
        ]
        return [Spacer(1, 14), self._band(rows, colors.HexColor(background), padding=6)]

    def _retry_banner(self) -> List:
        rows = [
            [Paragraph("RETRY AVAILABLE", self.styles["BrandSubtitle"])],
            [Paragraph("Visit our app to retry this withdrawal", self.styles["BrandSubtitle"])],
        ]
        return [Spacer(1, 12), self._band(rows, PRIMARY_COLOR, padding=4)]

    def _information(self, receipt) -> List:
        lines = [
            f"Your loan account number: {self.settings.loan_account}",
            "Loan disbursement will be processed within 24 hours after fee confirmation",
            "For any queries, contact support via the chat button",
            f"Keep this receipt for your records - Reference: {receipt.reference}",
        ]
        elements = [Paragraph("IMPORTANT INFORMATION", self.styles["SectionHeader"])]
        for line in lines:
            elements.append(Paragraph(f"&bull; {escape(line)}", self.styles["NoteText"]))
        return elements

    def _footer(self) -> List:
        brand = escape(self.settings.brand_name)
        year = datetime.now().year
        return [
            Spacer(1, 24),
            Paragraph(f"{brand} | Loan withdrawal receipt", self.styles["Footer"]),
            Paragraph(f"&copy; {year} {brand}. All rights reserved.", self.styles["Footer"]),
        ]


def render_receipt_pdf(receipt, settings) -> bytes:
    return ReceiptPDFRenderer(settings).render(receipt)
