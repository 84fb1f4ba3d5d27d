"""Mailbox request envelopes and response filtering.

The mailbox stores, under each recipient key, one entry per sender field:
``{sender: {"timestamp": ..., "value": {...}}}``. Every request is signed by
the caller over its own address, so the signature is the same for get, set
and delete requests made by one party.
"""

from typing import Any, Dict, Mapping, Tuple

from core.errors import DataNotFound, NotUnique
from core.result import Err, Ok, Result
from core.types import Keypair
from wallet import sign_hex


def _auth(own_address: str, keypair: Keypair) -> Dict[str, str]:
    return {
        "publicKey": keypair.public_key.hex(),
        "signature": sign_hex(keypair.secret_key, own_address),
    }


def build_get(own_address: str, keypair: Keypair) -> Dict[str, Any]:
    """Request body reading every entry left for ``own_address``."""
    return {"key": own_address, **_auth(own_address, keypair)}


def build_set(target_address: str, own_address: str, keypair: Keypair, value: Any) -> Dict[str, Any]:
    """Request body leaving ``value`` for ``target_address`` under our field."""
    return {
        "key": target_address,
        "field": own_address,
        **_auth(own_address, keypair),
        "value": value,
    }


def build_delete(own_address: str, counterparty_field_address: str, keypair: Keypair) -> Dict[str, Any]:
    """Request body removing the entry ``counterparty_field_address`` left for us."""
    return {
        "key": own_address,
        "field": counterparty_field_address,
        **_auth(own_address, keypair),
    }


def entry_value(entry: Any) -> Any:
    """Payload of a mailbox entry, unwrapping the timestamped form."""
    if isinstance(entry, Mapping) and "value" in entry:
        return entry["value"]
    return entry


def filter_by_predicates(response: Mapping[str, Any], predicates: Mapping[str, Any]) -> Result[Dict[str, Any]]:
    """Keep the entries whose value matches every ``field: expected`` pair.

    Returns:
        Ok(subset keyed by sender), or Err(DataNotFound) when nothing matches
    """
    subset = {}
    for sender, entry in (response or {}).items():
        value = entry_value(entry)
        if not isinstance(value, Mapping):
            continue
        if all(field in value and value[field] == expected for field, expected in predicates.items()):
            subset[sender] = entry

    if not subset:
        return Err(DataNotFound(f"No mailbox entry matches {dict(predicates)}"))
    return Ok(subset)


def unwrap_single(subset: Mapping[str, Any]) -> Result[Tuple[str, Any]]:
    """The only ``(sender, entry)`` pair of a filtered subset."""
    if len(subset) != 1:
        return Err(NotUnique(f"Expected exactly one mailbox entry, found {len(subset)}"))
    return Ok(next(iter(subset.items())))
