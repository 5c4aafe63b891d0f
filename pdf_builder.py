import logging
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.platypus.doctemplate import LayoutError

from formatting import format_currency, format_date
from totals import compute_breakdown, extended_amount

logger = logging.getLogger(__name__)

KINDS = ('estimate', 'invoice')
# what DocumentPDF.generate can raise for a document it cannot write or lay out
RENDER_ERRORS = (OSError, ValueError, LayoutError)


def _text(value):
    # user text goes through reportlab's paragraph markup parser
    return escape(value or '')


def build_document_context(document, client, settings, kind):
    """Collect everything a rendered estimate or invoice shows.

    Totals are recomputed from the line items, so they always agree with the
    document's cached total.
    """
    if kind not in KINDS:
        raise ValueError(f"kind must be one of {KINDS}, got {kind!r}")
    is_invoice = kind == 'invoice'
    breakdown = compute_breakdown(document.items, document.tax_rate)
    if breakdown.total != document.total:
        logger.warning("Document %s has a stale total %r, rendering %r",
                       document.id, document.total, breakdown.total)

    meta = {
        'title': 'INVOICE' if is_invoice else 'ESTIMATE',
        'number': document.invoice_number if is_invoice else document.estimate_number,
        'issue_date': document.issue_date,
    }
    if is_invoice:
        meta['due_date'] = document.due_date
        meta['paid'] = document.paid
    else:
        meta['valid_until'] = document.valid_until

    return {
        'kind': kind,
        'currency': settings.default_currency,
        'company': {
            'name': settings.company_name,
            'address': settings.address,
            'phone': settings.phone,
            'email': settings.email,
            'logo_uri': settings.logo_uri,
        },
        'client': {
            'name': client.name,
            'company': client.company,
            'address': client.address,
            'phone': client.phone,
            'email': client.email,
        },
        'meta': meta,
        'items': [
            {
                'description': item.description,
                'quantity': item.quantity,
                'unit': item.unit,
                'unit_price': item.unit_price,
                'amount': extended_amount(item),
                'taxable': item.taxable,
            }
            for item in document.items
        ],
        'totals': {
            'subtotal': breakdown.subtotal,
            'taxable_base': breakdown.taxable_base,
            'tax_rate': document.tax_rate,
            'tax': breakdown.tax,
            'total': breakdown.total,
        },
        'notes': document.notes,
    }


class DocumentPDF:
    def __init__(self, context):
        self.context = context
        self.currency = context['currency']
        self.font_name = 'Helvetica'
        self.bold_font_name = 'Helvetica-Bold'

    def money(self, amount):
        return _text(format_currency(amount, self.currency))

    def generate(self, filename):
        doc = SimpleDocTemplate(filename, pagesize=A4, rightMargin=40, leftMargin=40, topMargin=40, bottomMargin=40)
        story = []
        styles = getSampleStyleSheet()

        normal_style = ParagraphStyle('Normal_Custom', parent=styles['Normal'], fontName=self.font_name, fontSize=10, leading=14)
        white_bold_style = ParagraphStyle('WhiteBold_Custom', parent=styles['Normal'], fontName=self.bold_font_name, fontSize=10, leading=14, textColor=colors.white)
        bold_style = ParagraphStyle('Bold_Custom', parent=styles['Normal'], fontName=self.bold_font_name, fontSize=10, leading=14)
        title_style = ParagraphStyle('Title_Custom', parent=styles['Heading1'], fontName=self.bold_font_name, fontSize=24, spaceAfter=20, alignment=2)
        company = self.context['company']
        client = self.context['client']
        meta = self.context['meta']

        # ------------------------------------------------------------------
        # Header: company (left) | document title and number (right)
        # ------------------------------------------------------------------
        company_info = [Paragraph(_text(company['name']), bold_style)]
        for line in (company['address'] or '').split('\n'):
            if line:
                company_info.append(Paragraph(_text(line), normal_style))
        if company['email']:
            company_info.append(Paragraph(f"Email: {_text(company['email'])}", normal_style))
        if company['phone']:
            company_info.append(Paragraph(f"Phone: {_text(company['phone'])}", normal_style))

        title = [
            Paragraph(meta['title'], title_style),
            Paragraph(f"#{_text(meta['number'])}", ParagraphStyle('DocNum', parent=normal_style, alignment=2, fontSize=12, textColor=colors.gray))
        ]

        header_table = Table([[company_info, title]], colWidths=[3.5*inch, 2.5*inch])
        header_table.setStyle(TableStyle([
            ('VALIGN', (0,0), (-1,-1), 'TOP'),
            ('LEFTPADDING', (0,0), (-1,-1), 0),
            ('RIGHTPADDING', (0,0), (-1,-1), 0),
        ]))
        story.append(header_table)
        story.append(Spacer(1, 0.5*inch))

        # ------------------------------------------------------------------
        # Client block (left) | document details (right)
        # ------------------------------------------------------------------
        bill_to = [
            Paragraph("Bill To:" if meta['title'] == 'INVOICE' else "Prepared For:", ParagraphStyle('BillToLabel', parent=normal_style, textColor=colors.gray)),
            Paragraph(_text(client['name']), bold_style)
        ]
        for value in (client['company'], client['address'], client['email'], client['phone']):
            for line in (value or '').split('\n'):
                if line:
                    bill_to.append(Paragraph(_text(line), normal_style))

        def detail_label(text):
            return Paragraph(text, ParagraphStyle('DetailLabel', parent=normal_style, alignment=2, textColor=colors.gray))
        def detail_value(text, style=None):
            return Paragraph(text, style if style else ParagraphStyle('DetailValue', parent=normal_style, alignment=2))

        details_data = [[detail_label("Issue Date:"), detail_value(format_date(meta['issue_date']))]]
        if 'due_date' in meta:
            details_data.append([detail_label("Due Date:"), detail_value(format_date(meta['due_date']))])
            details_data.append([detail_label("Status:"), detail_value("Paid" if meta['paid'] else "Unpaid")])
        elif meta.get('valid_until'):
            details_data.append([detail_label("Valid Until:"), detail_value(format_date(meta['valid_until']))])
        details_data.append([
            Paragraph("Total:", ParagraphStyle('BalLabel', parent=bold_style, alignment=2)),
            Paragraph(self.money(self.context['totals']['total']), ParagraphStyle('BalValue', parent=bold_style, alignment=2))
        ])

        details_table = Table(details_data, colWidths=[2*inch, 1.2*inch])
        details_table.setStyle(TableStyle([
            ('VALIGN', (0,0), (-1,-1), 'MIDDLE'),
            ('ALIGN', (1,0), (1,-1), 'RIGHT'),
            ('BACKGROUND', (0,-1), (-1,-1), colors.whitesmoke),
            ('PADDING', (0,-1), (-1,-1), 6),
            ('BOTTOMPADDING', (0,0), (-1,-2), 2),
            ('TOPPADDING', (0,0), (-1,-2), 2),
        ]))

        mid_table = Table([[bill_to, details_table]], colWidths=[3.0*inch, 3.2*inch])
        mid_table.setStyle(TableStyle([
            ('VALIGN', (0,0), (-1,-1), 'TOP'),
            ('LEFTPADDING', (0,0), (-1,-1), 0),
        ]))
        story.append(mid_table)
        story.append(Spacer(1, 0.5*inch))

        # ------------------------------------------------------------------
        # Line items
        # ------------------------------------------------------------------
        items_data = [[
            Paragraph("Item", white_bold_style),
            Paragraph("Qty", white_bold_style),
            Paragraph("Unit", white_bold_style),
            Paragraph("Price", white_bold_style),
            Paragraph("Amount", white_bold_style)
        ]]
        for item in self.context['items']:
            items_data.append([
                Paragraph(_text(item['description']), normal_style),
                Paragraph(f"{item['quantity']:g}", normal_style),
                Paragraph(_text(item['unit']), normal_style),
                Paragraph(self.money(item['unit_price']), normal_style),
                Paragraph(self.money(item['amount']), normal_style)
            ])

        items_table = Table(items_data, colWidths=[2.6*inch, 0.7*inch, 0.7*inch, 1*inch, 1*inch])
        items_table.setStyle(TableStyle([
            ('BACKGROUND', (0,0), (-1,0), colors.Color(0.2, 0.2, 0.2)),
            ('TEXTCOLOR', (0,0), (-1,0), colors.white),
            ('ALIGN', (0,0), (-1,-1), 'LEFT'),
            ('FONTNAME', (0,0), (-1,-1), self.font_name),
            ('VALIGN', (0,0), (-1,-1), 'MIDDLE'),
            ('PADDING', (0,0), (-1,-1), 8),
        ]))
        story.append(items_table)
        story.append(Spacer(1, 0.2*inch))

        # ------------------------------------------------------------------
        # Totals
        # ------------------------------------------------------------------
        totals = self.context['totals']
        totals_data = [
            [Paragraph("Subtotal:", bold_style), Paragraph(self.money(totals['subtotal']), normal_style)],
            [Paragraph(f"Tax ({totals['tax_rate']:g}%):", bold_style), Paragraph(self.money(totals['tax']), normal_style)],
            [Paragraph("Total:", bold_style), Paragraph(self.money(totals['total']), bold_style)]
        ]
        totals_table = Table(totals_data, colWidths=[1.5*inch, 1.5*inch])
        totals_table.setStyle(TableStyle([
            ('ALIGN', (0,0), (-1,-1), 'RIGHT'),
            ('VALIGN', (0,0), (-1,-1), 'TOP'),
        ]))
        # push totals to the right
        story.append(Table([[None, totals_table]], colWidths=[3*inch, 3*inch]))
        story.append(Spacer(1, 0.5*inch))

        if self.context['notes']:
            story.append(Paragraph("Notes:", bold_style))
            story.append(Spacer(1, 5))
            for line in self.context['notes'].split('\n'):
                story.append(Paragraph(_text(line), normal_style))

        doc.build(story)
        return filename
