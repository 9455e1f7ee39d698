from .catalog import EXCLUDED_SCHEMAS, iter_databases
from .classifier import select_strategy
from .probe import capability_flags, probe_capabilities
from .session import DbSession, QuerySession, SessionFactory

__all__ = [
    "DbSession",
    "QuerySession",
    "SessionFactory",
    "EXCLUDED_SCHEMAS",
    "iter_databases",
    "select_strategy",
    "capability_flags",
    "probe_capabilities",
]
