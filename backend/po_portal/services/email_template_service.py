"""
Email Template Service - renders the purchase order email sent to suppliers
"""
from decimal import Decimal
from typing import Dict

from po_portal.models.purchase_order import PurchaseOrder


def portal_url(app_base_url: str, token: str) -> str:
    return f"{app_base_url.rstrip('/')}/supplier/{token}"


class EmailTemplateService:
    """Build subject and bodies for purchase order emails"""

    def render_purchase_order_email(self, po: PurchaseOrder, company_name: str, link: str) -> Dict[str, str]:
        """
        Returns:
            {
                'subject': str,
                'body_text': str,
                'body_html': str
            }
        """
        subject = f"Purchase Order {po.po_number} from {company_name}"
        amount = self._format_amount(po.amount, po.currency)

        body_text = (
            f"Hello,\n\n"
            f"Please find Purchase Order {po.po_number} from {company_name} below.\n\n"
            f"PO Number: {po.po_number}\n"
            f"Total Amount: {amount}\n\n"
            f"You can view, accept or reject this purchase order online here:\n{link}\n\n"
            f"Thank you,\n{company_name}\n"
        )

        return {
            'subject': subject,
            'body_text': body_text,
            'body_html': self._format_email_html(po, company_name, amount, link),
        }

    def _format_amount(self, amount: Decimal, currency: str) -> str:
        return f"{Decimal(amount).quantize(Decimal('0.01')):,} {currency}"

    def _format_email_html(self, po: PurchaseOrder, company_name: str, amount: str, link: str) -> str:
        rows = ""
        for line in po.po_lines:
            rows += f"""
            <tr>
              <td style="border: 1px solid #d1d5db; padding: 8px;">{self._escape_html(line.description)}</td>
              <td style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">{self._escape_html(str(line.quantity))}</td>
              <td style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">{self._escape_html(str(line.unit_price))}</td>
              <td style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">{self._escape_html(str(line.line_total))}</td>
            </tr>
            """

        po_number = self._escape_html(po.po_number)
        company = self._escape_html(company_name)
        href = self._escape_html(link)

        return f"""
        <html>
          <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #374151; padding: 20px;">
            <h1 style="color: #1f2937;">Purchase Order {po_number} from {company}</h1>
            <p>Hello,</p>
            <p>Please find Purchase Order {po_number} below.</p>
            <ul>
              <li>PO Number: {po_number}</li>
              <li>Total Amount: {self._escape_html(amount)}</li>
            </ul>
            <table style="border-collapse: collapse; width: 100%; margin: 20px 0;">
              <thead>
                <tr style="background-color: #f3f4f6;">
                  <th style="border: 1px solid #d1d5db; padding: 8px; text-align: left;">Description</th>
                  <th style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">Quantity</th>
                  <th style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">Unit Price</th>
                  <th style="border: 1px solid #d1d5db; padding: 8px; text-align: right;">Total</th>
                </tr>
              </thead>
              <tbody>{rows}</tbody>
            </table>
            <p>You can view, accept or reject this purchase order online here:</p>
            <p><a href="{href}">{href}</a></p>
            <p>Thank you,<br><strong>{company}</strong></p>
          </body>
        </html>
        """

    def _escape_html(self, text: str) -> str:
        """Escape HTML special characters"""
        if not text:
            return ''
        return (str(text)
                .replace('&', '&amp;')
                .replace('<', '&lt;')
                .replace('>', '&gt;')
                .replace('"', '&quot;')
                .replace("'", '&#39;'))
