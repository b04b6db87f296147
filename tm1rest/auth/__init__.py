"""Credential resolution for TM1 sessions.

Selects exactly one authentication mode from a bag of credential fields
using a fixed precedence order, and produces the header and token
material needed to authenticate subsequent requests.
"""

from tm1rest.auth.models import (
    AuthenticationMode,
    CredentialFields,
    ResolvedCredentials,
)
from tm1rest.auth.resolver import CredentialResolver, select_authentication_mode


__all__ = [
    "AuthenticationMode",
    "CredentialFields",
    "CredentialResolver",
    "ResolvedCredentials",
    "select_authentication_mode",
]
