import re
from importlib import metadata
from typing import Any, Mapping, Sequence

from social.graze.wallet.identity.errors import UnsupportedDidMethod


DISTRIBUTION_NAME = "graze-wallet"

_MATRIX_PARAMS = re.compile(r";[a-zA-Z0-9_.:%-]+=[a-zA-Z0-9_.:%-]*")
_QUERY_PARAMS = re.compile(r"\?[^#]*")


def validate_did_method_supported(
    did_method: str, supported_did_methods: Sequence[str]
) -> None:
    if did_method not in supported_did_methods:
        raise UnsupportedDidMethod(
            f"DID method {did_method!r} is not supported, expected one of "
            f"{', '.join(supported_did_methods)}"
        )


def strip_params_from_did_url(did: str) -> str:
    """Remove matrix (``;key=value``) and query (``?...``) parameters from a DID URL."""
    return _QUERY_PARAMS.sub("", _MATRIX_PARAMS.sub("", did))


def is_w3c_credential(document: Mapping[str, Any]) -> bool:
    return bool(document.get("type"))


def extract_sdk_version() -> str:
    try:
        return metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        return "0.0.0"


def normalize_redis_string(value: Any) -> str:
    """
    Normalize Redis value to string, handling bytes conversion.
    """
    if isinstance(value, bytes):
        return value.decode()
    return str(value)
