"""
Fiscal invoice lookups used to guard returns and voids.
"""

from sales.models import FiscalInvoice


class FiscalInvoiceService:

    @staticmethod
    def list_for_sale(store, sale):
        return list(
            FiscalInvoice.objects.filter(store=store, sale=sale).order_by('created_at')
        )

    @staticmethod
    def requires_credit_note(invoices) -> bool:
        """
        True when an issued invoice exists without an issued credit note.

        An issued invoice can only be reversed once the credit note that
        annuls it has been issued.
        """
        issued = [inv for inv in invoices if inv.status == FiscalInvoice.Status.ISSUED]
        has_invoice = any(
            inv.invoice_type == FiscalInvoice.InvoiceType.INVOICE for inv in issued
        )
        has_credit_note = any(
            inv.invoice_type == FiscalInvoice.InvoiceType.CREDIT_NOTE for inv in issued
        )
        return has_invoice and not has_credit_note
