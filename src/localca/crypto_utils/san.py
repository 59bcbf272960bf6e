"""Subject Alternative Name parsing and classification."""

import ipaddress
import re
from dataclasses import dataclass, field
from typing import Iterable, Union

from cryptography import x509

from ..errors import ValidationError

_SEPARATORS = re.compile(r"[,\s]+")


@dataclass
class SANList:
    """Ordered, de-duplicated SAN entries split by category."""

    dns_names: list[str] = field(default_factory=list)
    ip_addresses: list[str] = field(default_factory=list)
    entries: list[Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.entries)

    def to_general_names(self) -> list[x509.GeneralName]:
        """Convert entries to x509 general names, preserving order."""
        names = []
        for entry in self.entries:
            if isinstance(entry, str):
                names.append(x509.DNSName(entry))
            else:
                names.append(x509.IPAddress(entry))
        return names


def _tokenize(value: Union[str, Iterable[str], None]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        chunks = [value]
    else:
        chunks = list(value)

    tokens = []
    for chunk in chunks:
        tokens.extend(t for t in _SEPARATORS.split(chunk.strip()) if t)
    return tokens


def parse_san_list(*values: Union[str, Iterable[str], None]) -> SANList:
    """
    Parse SAN input into categorized, ordered, de-duplicated entries.

    Each argument may be a comma/whitespace separated string or an iterable
    of such strings. Tokens that parse as IPv4/IPv6 literals become IP
    SANs, everything else a DNS name.

    Args:
        *values: SAN sources in priority order

    Returns:
        SANList with dns_names, ip_addresses and ordered entries

    Raises:
        ValidationError: If a DNS token is not plain ASCII
    """
    result = SANList()
    seen = set()

    for value in values:
        for token in _tokenize(value):
            try:
                entry = ipaddress.ip_address(token)
            except ValueError:
                entry = token

            if entry in seen:
                continue
            seen.add(entry)

            if isinstance(entry, str):
                if not entry.isascii():
                    raise ValidationError(
                        f"DNS name must be ASCII (use the punycode form): {entry}",
                        entity=entry,
                        operation="parse SAN list"
                    )
                result.dns_names.append(entry)
            else:
                result.ip_addresses.append(str(entry))
            result.entries.append(entry)

    return result


def is_san_token(value: str) -> bool:
    """True if value would parse as exactly one SAN entry."""
    return bool(value) and _SEPARATORS.search(value) is None
