"""Reply-address routing — correlation tokens in plus-addressed reply addresses.

Each invitation gets a random token that is embedded in its Reply-To address
(local+rfp_TOKEN@domain). When a reply comes back, the token is read back out
of the recipient headers to find the invitation it answers.

Business Rules:
- Tokens are 12 characters from [A-Za-z0-9], drawn with `secrets`
- Prefix matching is case-insensitive; the token keeps its original case
- An address without a token segment is normal mail, not an error
- Tokens are only ever logged at DEBUG

Called by: services/invitations.py, services/correlation.py
Depends on: errors.py
"""

import re
import secrets
import string

from loguru import logger

from ..errors import ConfigurationError

TOKEN_LENGTH = 12
DEFAULT_PREFIX = "rfp"
_ALPHABET = string.ascii_letters + string.digits
_TOKEN_RE = re.compile(r"^[A-Za-z0-9]+$")


def generate_reply_token(length: int = TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _token_pattern(prefix: str) -> re.Pattern:
    return re.compile(r"\+" + re.escape(prefix) + r"_([A-Za-z0-9]+)@", re.IGNORECASE)


def encode_reply_address(base_address: str, token: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Build the reply address carrying `token`.

    Raises ConfigurationError for a missing or malformed base address and
    ValueError for an empty or non-alphanumeric token.
    """
    base = (base_address or "").strip()
    if base.count("@") != 1:
        raise ConfigurationError("Reply base address is missing or malformed", address=base)
    local, domain = base.split("@")
    if not local or not domain:
        raise ConfigurationError("Reply base address is missing or malformed", address=base)
    if not token or not _TOKEN_RE.match(token):
        raise ValueError("Reply token must be a non-empty alphanumeric string")

    # Drop any existing plus segment so tokens never stack
    local = local.split("+", 1)[0]
    return f"{local}+{prefix}_{token}@{domain}"


def decode_reply_address(address: str | None, prefix: str = DEFAULT_PREFIX) -> str | None:
    """Return the token embedded in `address`, or None when there is none."""
    if not address:
        return None
    m = _token_pattern(prefix).search(address)
    if not m:
        return None
    token = m.group(1)
    logger.debug("Decoded reply token {} from {}", token, address)
    return token


def find_reply_token(addresses, prefix: str = DEFAULT_PREFIX) -> str | None:
    """First token found across a recipient list (To, Cc, Delivered-To...)."""
    for addr in addresses or []:
        token = decode_reply_address(addr, prefix)
        if token:
            return token
    return None
