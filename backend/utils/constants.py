"""
Constants used throughout the application.
"""
from decimal import Decimal

# Quantities within this tolerance are treated as equal (weight products)
QTY_TOLERANCE = Decimal('0.0001')

# Money is stored and reported with two decimals
MONEY_PLACES = Decimal('0.01')

# Quantities are stored with four decimals
QTY_PLACES = Decimal('0.0001')

# Channels group receiving delivered sale events
SALES_EVENTS_GROUP = 'sales'

# Sale Status Colors
# Using Tailwind CSS color palette for consistency
SALE_STATUS_COLORS = {
    'active': '#10B981',   # Green-500 - Open for returns
    'voided': '#6B7280',   # Gray-500 - Terminal
}

# Status Display Names
SALE_STATUS_LABELS = {
    'active': 'Active',
    'voided': 'Voided',
}
