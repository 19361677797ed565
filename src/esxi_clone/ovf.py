"""OVF environment properties consumed by the guest's first-boot agent."""

from typing import List, Tuple
from xml.sax.saxutils import escape

from .models import NetworkConfig

OVF_ENV_KEY = "guestinfo.ovfEnv"


def ovf_properties(network: NetworkConfig) -> List[Tuple[str, str]]:
    """Ordered (key, value) pairs written into the OVF environment."""
    return [
        ("hostname", network.hostname),
        ("domain", network.domain),
        ("ip", network.ip),
        ("gateway", network.gateway),
        ("dns", network.dns),
        ("ntp", network.ntp),
        ("relay", network.relay),
        ("syslog", network.syslog),
    ]


def build_ovf_environment(network: NetworkConfig) -> str:
    """Render the ``<Property/>`` blob, one element per line."""
    return "".join(
        '<Property oe:key="%s" oe:value="%s"/>\n'
        % (escape(key, {'"': "&quot;"}), escape(value, {'"': "&quot;"}))
        for key, value in ovf_properties(network)
    )
