"""
Table resolution and SQL assembly for the UHI gateway

Table names are resolved and validated by TableValidator before QueryBuilder
puts them into SQL text; every value is a bound parameter.
"""

from .tables import TableRegistry, TableValidator
from .builder import QueryBuilder, filter_record, encode_value, quote_ident

__all__ = [
    'TableRegistry',
    'TableValidator',
    'QueryBuilder',
    'filter_record',
    'encode_value',
    'quote_ident',
]
