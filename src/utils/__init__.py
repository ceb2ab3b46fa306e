"""
Utility modules for the underwriting engine
"""
from .money import format_money, line_premium, quantize_money, to_decimal

__all__ = [
    'format_money',
    'line_premium',
    'quantize_money',
    'to_decimal',
]
