"""
Unit tests for VoidSaleService.

Tests voiding completed sales:
- Guards (already voided, fiscal invoice, debt payments)
- Debt deletion
- Restocking, serial release and journal entry cancellation
- All-or-nothing behaviour and the SaleVoided outbox event
"""

from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase, override_settings

from sales.models import (
    Debt, DebtPayment, FiscalInvoice, InventoryMovement, JournalEntry, LotMovement,
    ProductLot, ProductSerial, Sale, SaleEvent
)
from sales.services.accounting_service import AccountingService
from sales.services.sale_return_service import SaleReturnService
from sales.services.void_sale_service import VoidSaleService
from sales.tests.base import SalesFixturesMixin
from utils.exceptions import (
    CreditNoteRequiredError, DebtHasPaymentsError, ExternalFailureError,
    InvalidStateError, SaleVoidedError,
)


class VoidSaleServiceTest(SalesFixturesMixin, TestCase):
    """Test cases for VoidSaleService.void_sale."""

    def setUp(self):
        self.create_base_fixtures()
        self.lot = ProductLot.objects.create(
            product=self.product, lot_number='L-100', remaining_quantity=Decimal('20')
        )
        self.sale = self.create_sale([
            {'product': self.product, 'qty': '10', 'unit_price_usd': '2.00', 'lot': self.lot},
            {'product': self.phone, 'qty': '2', 'unit_price_usd': '300.00'},
        ])
        self.rice_item, self.phone_item = list(self.sale.items.all())
        self.serials = self.sell_serials(self.phone_item, 2)

    def create_entry(self, number='JE-1', status=JournalEntry.Status.POSTED):
        return JournalEntry.objects.create(
            store=self.store, entry_number=number, source_type='sale',
            source_id=self.sale.pk, status=status,
        )

    # ==================== Success Tests ====================

    def test_void_sets_metadata(self):
        """The sale becomes terminal with actor and reason."""
        sale = VoidSaleService.void_sale(self.store, self.sale.pk, self.user, reason='Wrong customer')

        sale.refresh_from_db()
        self.assertTrue(sale.is_voided)
        self.assertEqual(sale.status, Sale.Status.VOIDED)
        self.assertEqual(sale.voided_by, self.user)
        self.assertEqual(sale.void_reason, 'Wrong customer')
        self.assertTrue(sale.status_display['is_locked'])

    def test_void_restocks_every_item(self):
        """Every item is reversed with a reversal movement and stock increment."""
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        movements = InventoryMovement.objects.filter(reference__has_key='reversal')
        self.assertEqual(movements.count(), 2)
        for movement in movements:
            self.assertEqual(movement.reference['sale_id'], str(self.sale.pk))
            self.assertEqual(movement.movement_type, InventoryMovement.MovementType.ADJUST)
            self.assertTrue(movement.approved)
        self.assertEqual(self.stock_of(self.product), Decimal('10'))
        self.assertEqual(self.stock_of(self.phone), Decimal('2'))

    def test_void_credits_lots(self):
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user, reason='Duplicate')

        self.lot.refresh_from_db()
        self.assertEqual(self.lot.remaining_quantity, Decimal('30'))
        lot_movement = LotMovement.objects.get(lot=self.lot)
        self.assertEqual(lot_movement.qty_delta, Decimal('10'))
        self.assertIn('Duplicate', lot_movement.note)

    def test_void_releases_all_serials(self):
        """Every serial tied to the sale becomes returned."""
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        for serial in self.serials:
            serial.refresh_from_db()
            self.assertEqual(serial.status, ProductSerial.Status.RETURNED)
            self.assertIsNone(serial.sale_id)
            self.assertIsNone(serial.sale_item_id)
            self.assertIsNone(serial.sold_at)

    def test_void_skips_already_returned_quantity(self):
        """Quantities put back by earlier returns are not restocked twice."""
        SaleReturnService.process_return(
            self.store, self.sale.pk, self.user, [{'sale_item_id': self.rice_item.pk, 'qty': '4'}]
        )

        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.assertEqual(self.stock_of(self.product), Decimal('10'))
        reversal = InventoryMovement.objects.get(
            reference__has_key='reversal', product=self.product
        )
        self.assertEqual(reversal.qty_delta, Decimal('6'))

    def test_void_deletes_unpaid_debt(self):
        """A debt without payments is removed with the void."""
        Debt.objects.create(
            store=self.store, sale=self.sale, amount_usd=self.sale.total_usd, amount_bs=self.sale.total_bs
        )

        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.assertFalse(Debt.objects.filter(sale=self.sale).exists())

    def test_void_cancels_journal_entries(self):
        """Posted entries are cancelled, cancelled ones left alone."""
        posted = self.create_entry('JE-1')
        already = self.create_entry('JE-2', status=JournalEntry.Status.CANCELLED)

        VoidSaleService.void_sale(self.store, self.sale.pk, self.user, reason='Error')

        posted.refresh_from_db()
        already.refresh_from_db()
        self.assertEqual(posted.status, JournalEntry.Status.CANCELLED)
        self.assertEqual(posted.cancelled_by, self.user)
        self.assertEqual(posted.cancellation_reason, 'Error')
        self.assertIsNone(already.cancelled_by)

    def test_void_with_issued_credit_note(self):
        """An issued credit note unlocks the void."""
        for invoice_type, number in [
            (FiscalInvoice.InvoiceType.INVOICE, 'F-1'),
            (FiscalInvoice.InvoiceType.CREDIT_NOTE, 'NC-1'),
        ]:
            FiscalInvoice.objects.create(
                store=self.store, sale=self.sale, invoice_number=number,
                invoice_type=invoice_type, status=FiscalInvoice.Status.ISSUED,
            )

        sale = VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.assertTrue(sale.is_voided)

    # ==================== Rejection Tests ====================

    def test_void_twice_rejected(self):
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        with self.assertRaises(SaleVoidedError):
            VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

    def test_return_after_void_rejected(self):
        """Voided sales accept no further returns."""
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        with self.assertRaises(SaleVoidedError):
            SaleReturnService.process_return(
                self.store, self.sale.pk, self.user, [{'sale_item_id': self.rice_item.pk, 'qty': '1'}]
            )

    def test_issued_invoice_blocks_void(self):
        """Scenario D: issued invoice without credit note, the sale stays active."""
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='F-1',
            invoice_type=FiscalInvoice.InvoiceType.INVOICE, status=FiscalInvoice.Status.ISSUED,
        )

        with self.assertRaises(CreditNoteRequiredError):
            VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.sale.refresh_from_db()
        self.assertFalse(self.sale.is_voided)
        self.assertEqual(InventoryMovement.objects.count(), 0)

    def test_debt_with_payments_blocks_void(self):
        debt = Debt.objects.create(
            store=self.store, sale=self.sale, amount_usd=self.sale.total_usd, amount_bs=self.sale.total_bs
        )
        DebtPayment.objects.create(debt=debt, amount_usd=Decimal('10.00'), amount_bs=Decimal('100.00'))

        with self.assertRaises(DebtHasPaymentsError):
            VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.assertTrue(Debt.objects.filter(pk=debt.pk).exists())
        self.sale.refresh_from_db()
        self.assertFalse(self.sale.is_voided)

    def test_accounting_failure_aborts_void(self):
        """Entry cancellation is blocking: its failure undoes everything."""
        self.create_entry('JE-1')
        Debt.objects.create(
            store=self.store, sale=self.sale, amount_usd=self.sale.total_usd, amount_bs=self.sale.total_bs
        )

        with patch.object(AccountingService, 'cancel_entry', side_effect=RuntimeError('ledger locked')):
            with self.assertRaises(ExternalFailureError):
                VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.sale.refresh_from_db()
        self.lot.refresh_from_db()
        self.assertFalse(self.sale.is_voided)
        self.assertTrue(Debt.objects.filter(sale=self.sale).exists())
        self.assertEqual(self.lot.remaining_quantity, Decimal('20'))
        self.assertEqual(self.stock_of(self.product), Decimal('0'))
        self.assertEqual(
            ProductSerial.objects.filter(sale=self.sale, status=ProductSerial.Status.SOLD).count(), 2
        )
        self.assertFalse(SaleEvent.objects.exists())

    def test_stock_failure_aborts_void(self):
        with patch(
            'sales.services.return_inventory_service.WarehouseService.update_stock',
            side_effect=RuntimeError('stock service down'),
        ):
            with self.assertRaises(ExternalFailureError):
                VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        self.sale.refresh_from_db()
        self.assertFalse(self.sale.is_voided)

    # ==================== Event Tests ====================

    def test_void_writes_outbox_event(self):
        VoidSaleService.void_sale(self.store, self.sale.pk, self.user, reason='Test')

        event = SaleEvent.objects.get(event_type=SaleEvent.EventType.SALE_VOIDED)
        self.assertEqual(event.sale_id, self.sale.pk)
        self.assertEqual(event.payload['sale_id'], str(self.sale.pk))
        self.assertEqual(event.payload['void_reason'], 'Test')

    @override_settings(SALE_EVENTS_USE_QUEUE=True)
    def test_event_queued_after_commit(self):
        """Dispatch happens only once the transaction commits."""
        with patch('sales.tasks.deliver_sale_event.delay') as delay:
            with self.captureOnCommitCallbacks(execute=False) as callbacks:
                VoidSaleService.void_sale(self.store, self.sale.pk, self.user)
            delay.assert_not_called()

            for callback in callbacks:
                callback()

        event = SaleEvent.objects.get(event_type=SaleEvent.EventType.SALE_VOIDED)
        delay.assert_called_once_with(str(event.pk))

    @override_settings(SALE_EVENTS_USE_QUEUE=False)
    def test_event_delivered_inline_without_queue(self):
        with self.captureOnCommitCallbacks(execute=True):
            VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        event = SaleEvent.objects.get(event_type=SaleEvent.EventType.SALE_VOIDED)
        self.assertEqual(event.status, SaleEvent.Status.DELIVERED)
        self.assertIsNotNone(event.delivered_at)

    @override_settings(SALE_EVENTS_USE_QUEUE=False)
    def test_event_failure_does_not_undo_void(self):
        """Broadcast failures are recorded on the event; the void stands."""
        with patch(
            'sales.services.sale_event_service.get_channel_layer',
            side_effect=RuntimeError('redis down'),
        ):
            with self.captureOnCommitCallbacks(execute=True):
                sale = VoidSaleService.void_sale(self.store, self.sale.pk, self.user)

        sale.refresh_from_db()
        self.assertTrue(sale.is_voided)
        event = SaleEvent.objects.get(event_type=SaleEvent.EventType.SALE_VOIDED)
        self.assertEqual(event.status, SaleEvent.Status.PENDING)
        self.assertEqual(event.attempts, 1)
        self.assertIn('redis down', event.last_error)


class AccountingServiceTest(SalesFixturesMixin, TestCase):

    def setUp(self):
        self.create_base_fixtures()
        self.sale = self.create_sale([
            {'product': self.product, 'qty': '1', 'unit_price_usd': '2.00'},
        ])
        self.entry = JournalEntry.objects.create(
            store=self.store, entry_number='JE-7', source_type='sale', source_id=self.sale.pk,
        )

    def test_find_entries_for_sale(self):
        JournalEntry.objects.create(
            store=self.store, entry_number='JE-8', source_type='purchase', source_id=self.sale.pk,
        )
        entries = AccountingService.find_entries_for_sale(self.store, self.sale)
        self.assertEqual(entries, [self.entry])

    def test_cancel_twice_rejected(self):
        AccountingService.cancel_entry(self.store, self.entry.pk, self.user, 'reason')

        with self.assertRaises(InvalidStateError):
            AccountingService.cancel_entry(self.store, self.entry.pk, self.user, 'reason')
