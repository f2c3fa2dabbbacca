"""
Handler Registry - Maps request indicators to handler functions

Every handler is an async function handle_<operation>(services, request)
returning a GatewayResponse. Indicators match case-insensitively.

Registry maps indicator -> (handler_function, needs_table_check) where
needs_table_check means the dispatcher validates the payload's listName
before the handler runs. Handlers without it either take no table or check
listName themselves.

Usage:
    from handlers import get_handler

    handler_info = get_handler(request.indicator)
    if handler_info:
        handler, needs_table_check = handler_info
        response = await handler(services, request)
"""

from typing import Callable, Optional, Tuple

from . import beneficiary_handlers
from . import family_handlers
from . import record_handlers


# Handler registry: {indicator (lower-case): (handler_function, needs_table_check)}
HANDLER_REGISTRY = {
    # Generic table operations
    "i": (record_handlers.handle_insert, False),   # validates listName itself
    "u": (record_handlers.handle_update, True),
    "l": (record_handlers.handle_lookup, True),

    # Family operations
    "hof": (family_handlers.handle_hof_enrollment, False),
    "nomination": (family_handlers.handle_nomination, False),

    # Beneficiary bulk writes
    "insert_beneficiary": (beneficiary_handlers.handle_insert_beneficiary, False),
    "update_beneficiary": (beneficiary_handlers.handle_update_beneficiary, False),
    "split_beneficiary": (beneficiary_handlers.handle_split_beneficiary, False),
    "split": (beneficiary_handlers.handle_split_beneficiary, False),
}


def get_handler(indicator: Optional[str]) -> Optional[Tuple[Callable, bool]]:
    """
    Get handler function and its requirements for an indicator.

    Returns:
        Tuple of (handler_function, needs_table_check) or None
    """
    if indicator is None:
        return None
    return HANDLER_REGISTRY.get(indicator.strip().lower())


def list_all_handlers() -> list[str]:
    """Get list of all registered indicators"""
    return list(HANDLER_REGISTRY.keys())


__all__ = [
    'get_handler',
    'list_all_handlers',
    'HANDLER_REGISTRY'
]
