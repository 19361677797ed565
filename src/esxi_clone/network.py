"""
Network identity of the clone.

The destination address comes from an explicit override or a forward DNS
lookup of ``<name>.<domain>``; the gateway defaults to ``.254`` on the
address's /24.
"""

import asyncio
import socket
from typing import Callable, Optional, Sequence, Tuple

from .exceptions import ConfigurationError
from .inventory import HostEntry
from .logging import logger
from .models import DNS_NOT_FOUND, DestinationDescriptor, HostFacts, NetworkConfig
from .resolver import CloneOverrides, first_defined
from .security import SecurityValidator

Lookup = Callable[[str], str]


def system_lookup(fqdn: str) -> str:
    """Forward lookup through the system resolver; ``NXDOMAIN`` if absent."""
    try:
        return socket.gethostbyname(fqdn)
    except (socket.gaierror, socket.herror, UnicodeError):
        return DNS_NOT_FOUND


def default_gateway(ip: str) -> str:
    """``10.1.10.123`` -> ``10.1.10.254``. Non-IPv4 input is returned unchanged."""
    if not SecurityValidator.is_valid_ipv4(ip):
        return ip
    return ".".join(ip.split(".")[:3] + ["254"])


def parse_resolv_conf(text: str) -> Tuple[Optional[str], Tuple[str, ...]]:
    """Extract the DNS domain and name servers from resolv.conf text."""
    domain = None
    search = None
    servers = []

    for line in text.splitlines():
        fields = line.split("#", 1)[0].split()
        if len(fields) < 2:
            continue
        keyword, values = fields[0], fields[1:]
        if keyword == "domain":
            domain = values[0]
        elif keyword == "search" and search is None:
            search = values[0]
        elif keyword == "nameserver":
            servers.append(values[0])

    return first_defined(domain, search), tuple(servers)


class NetworkIdentityResolver:
    """Resolves IP, gateway and DNS settings for the clone."""

    def __init__(self, lookup: Optional[Lookup] = None) -> None:
        self.lookup = lookup or system_lookup

    async def resolve_ip(self, fqdn: str) -> str:
        loop = asyncio.get_event_loop()
        address = await loop.run_in_executor(None, self.lookup, fqdn)
        logger.debug(f"DNS lookup {fqdn} -> {address}", fqdn=fqdn, address=address)
        return address or DNS_NOT_FOUND

    async def resolve(
        self,
        overrides: CloneOverrides,
        dest: HostEntry,
        facts: HostFacts,
        destination: DestinationDescriptor,
    ) -> NetworkConfig:
        """
        Build the clone's network config.

        An unresolvable name is not raised here: the IP is left as ``NXDOMAIN``
        so the precondition check reports it alongside any other failures.
        """
        domain = first_defined(dest.vars.dns_domain, facts.dns_domain)
        if not domain:
            raise ConfigurationError(
                f"No DNS domain known for {dest.name}; set dns_domain in the inventory"
            )

        dns_servers: Sequence[str] = first_defined(dest.vars.dns_servers, facts.dns_servers) or ()

        ip = overrides.dst_vm_ip
        if ip is None:
            ip = await self.resolve_ip(f"{destination.name}.{domain}")

        gateway = first_defined(overrides.dst_vm_gw, default_gateway(ip))

        return NetworkConfig(
            hostname=destination.name,
            domain=domain,
            ip=ip,
            gateway=gateway,
            dns_servers=tuple(dns_servers),
        )
