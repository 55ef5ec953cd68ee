"""
Field alias lookup (SSOT).

Nuvem Fiscal payloads (feed documents and webhook events) are inconsistent
about field names: the same logical value may arrive as `chave` or
`chave_acesso`, at the top level or nested under `data`. Every tolerated
spelling is declared here as a prioritized tuple, and `first_present` is the
only way callers read such fields.

Dotted aliases (`data.chave`) walk nested dicts.
"""

import re
from typing import Any

# Feed document fields
ACCESS_KEY_ALIASES = ("chave", "chave_acesso")
SUPPLIER_TAX_ID_ALIASES = ("cnpj_emitente", "emit_cnpj")
SUPPLIER_NAME_ALIASES = ("nome_emitente", "emit_nome")
DOCUMENT_TYPE_ALIASES = ("tipo_documento",)
DOCUMENT_NUMBER_ALIASES = ("numero",)
SERIES_ALIASES = ("serie",)
ISSUE_DATE_ALIASES = ("data_emissao",)
TOTAL_VALUE_ALIASES = ("valor", "valor_total")
PROTOCOL_ALIASES = ("protocolo",)
STATUS_ALIASES = ("situacao",)

# Webhook event fields
EVENT_TYPE_ALIASES = ("tipo", "type", "event")
EVENT_ACCESS_KEY_ALIASES = ("chave_acesso", "chave", "data.chave")
EVENT_TAX_ID_ALIASES = ("cpf_cnpj", "cnpj", "data.cpf_cnpj")

_NON_DIGITS = re.compile(r"\D")


def _lookup(payload: Any, path: str) -> Any:
    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def first_present(payload: dict[str, Any], aliases: tuple[str, ...]) -> Any:
    """
    Return the first non-empty value found under any alias, in order.

    Args:
        payload: Raw payload dict
        aliases: Prioritized field names (dotted for nested)

    Returns:
        The value, or None when no alias yields one
    """
    for alias in aliases:
        value = _lookup(payload, alias)
        if value is None or value == "":
            continue
        return value
    return None


def normalize_tax_id(value: Any) -> str:
    """Strip everything but digits from a CNPJ/CPF."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))
