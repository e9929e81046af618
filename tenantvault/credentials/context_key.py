"""Partition keys for credential items.

A context key lists the present tenant fields in a fixed order, each as
``TAG#value``, joined with ``#``::

    TenantContext(enterprise_id="E1", account_id="A1")  ->  "ENT#E1#ACC#A1"
    TenantContext()                                      ->  "DEFAULT"
"""

from tenantvault.types import TenantContext

SEPARATOR = "#"
DEFAULT_CONTEXT_KEY = "DEFAULT"

PARTITION_PREFIX = "VAULT#"
USER_PARTITION_PREFIX = "USER#"
SORT_PREFIX = "TOKEN#"

# (field, tag) in key order
FIELD_TAGS: tuple[tuple[str, str], ...] = (
    ("enterprise_id", "ENT"),
    ("enterprise_name", "ENT_NAME"),
    ("account_id", "ACC"),
    ("account_name", "ACC_NAME"),
    ("workstream", "WS"),
    ("product", "PROD"),
    ("service", "SVC"),
)

_NAMES = ("account_name", "enterprise_name")
_SCOPE = ("workstream", "product", "service")


def _escape(value: str) -> str:
    # Values without '%' or '#' are emitted unchanged.
    return value.replace("%", "%25").replace(SEPARATOR, "%23")


def build_context_key(context: TenantContext) -> str:
    """Deterministic partition fragment for *context*."""
    parts = [
        f"{tag}{SEPARATOR}{_escape(getattr(context, field))}"
        for field, tag in FIELD_TAGS
        if getattr(context, field)
    ]
    return SEPARATOR.join(parts) if parts else DEFAULT_CONTEXT_KEY


def lookup_variants(context: TenantContext) -> list[str]:
    """Context keys a read tries, most specific first, without duplicates.

    Records written with less context than the reader now has (no names, or
    written before workstream/product/service existed) still sit under one
    of these keys.
    """
    candidates = (
        context,                               # everything supplied
        context.without("account_name"),
        context.without("enterprise_name"),
        context.without(*_NAMES),              # ids + workstream/product/service
        context.without(*_SCOPE),              # legacy: ids + names
        context.without(*_NAMES, *_SCOPE),     # ids only
    )
    return list(dict.fromkeys(build_context_key(c) for c in candidates))


def partition_key(context_key: str) -> str:
    return f"{PARTITION_PREFIX}{context_key}"


def user_partition_key(user_id: str) -> str:
    return f"{USER_PARTITION_PREFIX}{user_id}"


def sort_key(record_id: str) -> str:
    return f"{SORT_PREFIX}{record_id}"
