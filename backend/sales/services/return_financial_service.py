"""
Return Financial Service

Monetary side of a return, in both currencies (bs / usd):
- Line amounts: prorated discount, subtotal and total for a returned qty
- Sale totals: shrink subtotal, discount and total, floored at zero
- Debt: reset to the updated sale totals, paid once nothing is owed

Amounts are carried unrounded and rounded to cents (half up) only when
stored.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional
import logging

from sales.models import Debt
from utils.constants import MONEY_PLACES

logger = logging.getLogger(__name__)

CURRENCIES = ('bs', 'usd')
TOTAL_FIELDS = ('subtotal', 'discount', 'total')
ZERO = Decimal('0')


def round_money(value) -> Decimal:
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


class ReturnFinancialService:
    """Service for computing return amounts and updating sale/debt balances."""

    @staticmethod
    def empty_totals() -> Dict[str, Decimal]:
        return {f'{field}_{cur}': ZERO for field in TOTAL_FIELDS for cur in CURRENCIES}

    @staticmethod
    def line_amounts(sale_item, qty: Decimal) -> Dict[str, Decimal]:
        """
        Amounts for returning ``qty`` units of ``sale_item``.

        The item's discount is a line total, so it is prorated per unit of
        the original quantity.

        Returns:
            Dict with unit_price, subtotal, discount and total per currency
            (e.g. ``subtotal_usd``), unrounded
        """
        original_qty = sale_item.qty or ZERO
        amounts = {}
        for cur in CURRENCIES:
            unit_price = getattr(sale_item, f'unit_price_{cur}') or ZERO
            item_discount = getattr(sale_item, f'discount_{cur}') or ZERO
            per_unit_discount = item_discount / original_qty if original_qty > 0 else ZERO

            subtotal = unit_price * qty
            discount = per_unit_discount * qty
            amounts[f'unit_price_{cur}'] = unit_price
            amounts[f'subtotal_{cur}'] = subtotal
            amounts[f'discount_{cur}'] = discount
            amounts[f'total_{cur}'] = subtotal - discount
        return amounts

    @staticmethod
    def accumulate(totals: Dict[str, Decimal], line: Dict[str, Decimal]) -> Dict[str, Decimal]:
        for key in totals:
            totals[key] += line[key]
        return totals

    @staticmethod
    def rounded(totals: Dict[str, Decimal]) -> Dict[str, Decimal]:
        return {key: round_money(value) for key, value in totals.items()}

    @staticmethod
    def apply_to_sale(sale, returned: Dict[str, Decimal]):
        """
        Subtract the returned amounts from the sale and save it.

        Subtotal and discount shrink independently, floored at zero; the
        total is always derived from them so rounding never accumulates.
        """
        update_fields = []
        for cur in CURRENCIES:
            subtotal = round_money(max(
                ZERO, (getattr(sale, f'subtotal_{cur}') or ZERO) - returned[f'subtotal_{cur}']
            ))
            discount = round_money(max(
                ZERO, (getattr(sale, f'discount_{cur}') or ZERO) - returned[f'discount_{cur}']
            ))
            setattr(sale, f'subtotal_{cur}', subtotal)
            setattr(sale, f'discount_{cur}', discount)
            setattr(sale, f'total_{cur}', max(ZERO, round_money(subtotal - discount)))
            update_fields += [f'subtotal_{cur}', f'discount_{cur}', f'total_{cur}']
        sale.save(update_fields=update_fields + ['updated_at'])
        return sale

    @staticmethod
    def sync_debt(sale) -> Optional[Debt]:
        """
        Reset the sale's debt to the sale's current totals.

        Returns:
            The updated Debt, or None when the sale has no debt
        """
        debt = Debt.objects.select_for_update().filter(sale=sale).first()
        if debt is None:
            return None

        debt.amount_bs = sale.total_bs
        debt.amount_usd = sale.total_usd
        debt.status = Debt.Status.PAID if sale.total_usd <= 0 else Debt.Status.OPEN
        debt.save(update_fields=['amount_bs', 'amount_usd', 'status', 'updated_at'])

        logger.info(f"Debt {debt.pk} of sale {sale.pk} reset to {debt.amount_usd} USD ({debt.status})")
        return debt
