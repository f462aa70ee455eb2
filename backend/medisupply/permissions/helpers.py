# Overview: Lookups over the static permission catalogue.

from .definitions import PERMISSION_DEFINITIONS

KNOWN_PERMISSION_CODES = frozenset(perm[0] for perm in PERMISSION_DEFINITIONS)


def validate_permission_code(code):
    """True if `code` names a permission in the catalogue (workflow stages may only require these)."""
    return code in KNOWN_PERMISSION_CODES
