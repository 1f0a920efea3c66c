"""
Services package for sale return and void business logic.
"""
from .sale_return_service import SaleReturnService
from .void_sale_service import VoidSaleService

__all__ = ['SaleReturnService', 'VoidSaleService']
