"""
Unit tests for ReturnValidationService.

Covers the whole-sale guards and the per-item checks:
- Voided sales, missing credit notes, debts with payments
- Quantity parsing, whole units, remaining quantity
- Serial requirements
"""

from decimal import Decimal

from django.test import TestCase
from django.utils import timezone

from sales.models import Debt, DebtPayment, FiscalInvoice, Sale
from sales.services.return_validation_service import ReturnValidationService
from sales.tests.base import SalesFixturesMixin
from utils.exceptions import (
    CreditNoteRequiredError, DebtHasPaymentsError, InvalidQuantityError,
    InvalidStateError, QuantityExceedsRemainingError, SaleItemNotFoundError,
    SaleVoidedError, SerialsRequiredError,
)


class SaleStateValidationTest(SalesFixturesMixin, TestCase):
    """Whole-sale preconditions shared by returns and voids."""

    def setUp(self):
        self.create_base_fixtures()
        self.sale = self.create_sale([
            {'product': self.product, 'qty': '10', 'unit_price_usd': '2.00'},
        ])

    def test_active_sale_passes(self):
        """A plain active sale has no blocking state."""
        ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_voided_sale_rejected(self):
        """Voided sales are terminal."""
        self.sale.voided_at = timezone.now()
        self.sale.save()

        with self.assertRaises(SaleVoidedError):
            ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_issued_invoice_without_credit_note_rejected(self):
        """An issued invoice must be annulled by an issued credit note first."""
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='F-0001',
            invoice_type=FiscalInvoice.InvoiceType.INVOICE,
            status=FiscalInvoice.Status.ISSUED,
        )

        with self.assertRaises(CreditNoteRequiredError) as ctx:
            ReturnValidationService.validate_sale_state(self.store, self.sale)
        self.assertIn('credit note is required', str(ctx.exception.detail))

    def test_draft_credit_note_does_not_count(self):
        """Only an issued credit note unlocks the sale."""
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='F-0001',
            invoice_type=FiscalInvoice.InvoiceType.INVOICE,
            status=FiscalInvoice.Status.ISSUED,
        )
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='NC-0001',
            invoice_type=FiscalInvoice.InvoiceType.CREDIT_NOTE,
            status=FiscalInvoice.Status.DRAFT,
        )

        with self.assertRaises(CreditNoteRequiredError):
            ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_issued_invoice_with_issued_credit_note_passes(self):
        """An issued credit note clears the fiscal guard."""
        for invoice_type, number in [
            (FiscalInvoice.InvoiceType.INVOICE, 'F-0001'),
            (FiscalInvoice.InvoiceType.CREDIT_NOTE, 'NC-0001'),
        ]:
            FiscalInvoice.objects.create(
                store=self.store, sale=self.sale, invoice_number=number,
                invoice_type=invoice_type, status=FiscalInvoice.Status.ISSUED,
            )

        ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_draft_invoice_does_not_block(self):
        """Unissued invoices have no fiscal effect."""
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='F-0002',
            invoice_type=FiscalInvoice.InvoiceType.INVOICE,
            status=FiscalInvoice.Status.DRAFT,
        )

        ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_debt_with_payments_rejected(self):
        """Payments on the sale's debt must be reversed first."""
        debt = Debt.objects.create(
            store=self.store, sale=self.sale, amount_usd=Decimal('20.00'), amount_bs=Decimal('200.00')
        )
        DebtPayment.objects.create(debt=debt, amount_usd=Decimal('5.00'), amount_bs=Decimal('50.00'))

        with self.assertRaises(DebtHasPaymentsError):
            ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_debt_without_payments_passes(self):
        """An untouched debt does not block."""
        Debt.objects.create(
            store=self.store, sale=self.sale, amount_usd=Decimal('20.00'), amount_bs=Decimal('200.00')
        )

        ReturnValidationService.validate_sale_state(self.store, self.sale)

    def test_voided_check_runs_first(self):
        """A voided sale reports as voided even when other guards would fail."""
        FiscalInvoice.objects.create(
            store=self.store, sale=self.sale, invoice_number='F-0001',
            invoice_type=FiscalInvoice.InvoiceType.INVOICE,
            status=FiscalInvoice.Status.ISSUED,
        )
        self.sale.voided_at = timezone.now()
        self.sale.save()

        with self.assertRaises(SaleVoidedError):
            ReturnValidationService.validate_sale_state(self.store, self.sale)


class ReturnItemValidationTest(SalesFixturesMixin, TestCase):
    """Per-item checks."""

    def setUp(self):
        self.create_base_fixtures()
        self.sale = self.create_sale([
            {'product': self.product, 'qty': '10', 'unit_price_usd': '2.00'},
            {'product': self.cheese, 'qty': '1.5', 'unit_price_usd': '8.00'},
            {'product': self.phone, 'qty': '2', 'unit_price_usd': '300.00'},
        ])
        self.rice_item, self.cheese_item, self.phone_item = list(self.sale.items.all())

    # ==================== Quantity Tests ====================

    def test_parse_quantity_accepts_numeric_forms(self):
        """Strings, ints, floats and Decimals are all accepted."""
        self.assertEqual(ReturnValidationService.parse_quantity('2'), Decimal('2'))
        self.assertEqual(ReturnValidationService.parse_quantity(3), Decimal('3'))
        self.assertEqual(ReturnValidationService.parse_quantity(0.25), Decimal('0.25'))
        self.assertEqual(ReturnValidationService.parse_quantity(Decimal('1.5')), Decimal('1.5'))

    def test_parse_quantity_rejects_invalid_values(self):
        """Zero, negatives, non-numbers and non-finite values are rejected."""
        for value in ['0', '-1', 'abc', None, True, 'NaN', 'Infinity', float('inf')]:
            with self.subTest(value=value):
                with self.assertRaises(InvalidQuantityError):
                    ReturnValidationService.parse_quantity(value)

    def test_parse_quantity_rounds_to_four_places(self):
        """Quantities are rounded half up to 4 decimals."""
        self.assertEqual(ReturnValidationService.parse_quantity('0.12345'), Decimal('0.1235'))
        self.assertEqual(ReturnValidationService.parse_quantity('0.00005'), Decimal('0.0001'))

    def test_parse_quantity_rejects_values_rounding_to_zero(self):
        """A positive quantity too small to store is rejected."""
        with self.assertRaises(InvalidQuantityError):
            ReturnValidationService.parse_quantity('0.00004')

    def test_sale_item_weight_flag_governs(self):
        """A later catalog change to the product does not relax a historical sale."""
        sale = self.create_sale([
            {'product': self.cheese, 'qty': '2', 'unit_price_usd': '8.00', 'is_weight_product': False},
        ])
        item = sale.items.get()

        with self.assertRaises(InvalidQuantityError):
            ReturnValidationService.validate_item(item, '0.5', Decimal('0'))

    def test_fractional_quantity_rejected_for_unit_products(self):
        """Non-weight products come back in whole units."""
        with self.assertRaises(InvalidQuantityError):
            ReturnValidationService.validate_item(self.rice_item, '1.5', Decimal('0'))

    def test_fractional_quantity_allowed_for_weight_products(self):
        """Weight products accept fractional quantities."""
        qty = ReturnValidationService.validate_item(self.cheese_item, '0.75', Decimal('0'))
        self.assertEqual(qty, Decimal('0.75'))

    def test_quantity_over_remaining_rejected(self):
        """Scenario C: 2 remaining, 3 requested."""
        with self.assertRaises(QuantityExceedsRemainingError):
            ReturnValidationService.validate_item(self.rice_item, '3', Decimal('8'))

    def test_quantity_within_tolerance_accepted(self):
        """A weight return exceeding remaining by less than 1e-4 is accepted."""
        qty = ReturnValidationService.validate_item(
            self.cheese_item, '1.50005', Decimal('0')
        )
        self.assertEqual(qty, Decimal('1.5001'))

    def test_quantity_beyond_tolerance_rejected(self):
        """Anything above the tolerance is rejected."""
        with self.assertRaises(QuantityExceedsRemainingError):
            ReturnValidationService.validate_item(self.cheese_item, '1.5002', Decimal('0'))

    # ==================== Serial Tests ====================

    def test_serialized_item_requires_serials(self):
        """Scenario E: sold serials exist, none supplied."""
        self.sell_serials(self.phone_item, 2)

        with self.assertRaises(SerialsRequiredError) as ctx:
            ReturnValidationService.validate_item(self.phone_item, '1', Decimal('0'))
        self.assertIn('must specify serials', str(ctx.exception.detail))

    def test_serial_count_must_match_quantity(self):
        """One serial per returned unit."""
        serials = self.sell_serials(self.phone_item, 2)

        with self.assertRaises(SerialsRequiredError):
            ReturnValidationService.validate_item(
                self.phone_item, '2', Decimal('0'), [str(serials[0].pk)]
            )

    def test_duplicate_serials_rejected(self):
        """The same serial cannot be counted twice."""
        serials = self.sell_serials(self.phone_item, 2)

        with self.assertRaises(InvalidStateError):
            ReturnValidationService.validate_item(
                self.phone_item, '2', Decimal('0'), [str(serials[0].pk), str(serials[0].pk)]
            )

    def test_serials_matching_quantity_accepted(self):
        """Matching serial count passes validation."""
        serials = self.sell_serials(self.phone_item, 2)

        qty = ReturnValidationService.validate_item(
            self.phone_item, '1', Decimal('0'), [str(serials[1].pk)]
        )
        self.assertEqual(qty, Decimal('1'))

    # ==================== Request Tests ====================

    def test_empty_request_rejected(self):
        """A return needs at least one line."""
        with self.assertRaises(InvalidStateError):
            ReturnValidationService.validate_return_request(self.store, self.sale, [])

    def test_foreign_sale_item_rejected(self):
        """Items of another sale are not found on this one."""
        other_sale = self.create_sale([
            {'product': self.product, 'qty': '1', 'unit_price_usd': '2.00'},
        ])
        foreign_item = other_sale.items.get()

        with self.assertRaises(SaleItemNotFoundError):
            ReturnValidationService.validate_return_request(self.store, self.sale, [
                {'sale_item_id': foreign_item.pk, 'qty': '1'},
            ])

    def test_repeated_lines_share_remaining_quantity(self):
        """Two lines for the same item are checked cumulatively."""
        with self.assertRaises(QuantityExceedsRemainingError):
            ReturnValidationService.validate_return_request(self.store, self.sale, [
                {'sale_item_id': self.rice_item.pk, 'qty': '6'},
                {'sale_item_id': self.rice_item.pk, 'qty': '5'},
            ])

    def test_valid_request_returns_normalized_lines(self):
        """Validated lines carry the sale item and Decimal quantity."""
        lines = ReturnValidationService.validate_return_request(self.store, self.sale, [
            {'sale_item_id': str(self.rice_item.pk), 'qty': 4, 'note': 'Broken bag'},
        ])

        self.assertEqual(len(lines), 1)
        self.assertEqual(lines[0]['sale_item'], self.rice_item)
        self.assertEqual(lines[0]['qty'], Decimal('4'))
        self.assertIsNone(lines[0]['serial_ids'])
        self.assertEqual(lines[0]['note'], 'Broken bag')

    def test_voided_sale_rejected_before_item_checks(self):
        """Whole-sale guards run before item checks."""
        Sale.objects.filter(pk=self.sale.pk).update(voided_at=timezone.now())
        self.sale.refresh_from_db()

        with self.assertRaises(SaleVoidedError):
            ReturnValidationService.validate_return_request(self.store, self.sale, [
                {'sale_item_id': self.rice_item.pk, 'qty': '100'},
            ])
