"""
Soft Delete Module - recoverable deletion for documents.

Provides the paranoia mixin and the scope installer that wires the configured
timestamp field and scope names into each paranoid document type.
"""

from .mixins import ParanoiaMixin
from .scopes import install_paranoia, set_paranoid_field, set_paranoid_scope

__all__ = [
    "ParanoiaMixin",
    "install_paranoia",
    "set_paranoid_field",
    "set_paranoid_scope",
]
