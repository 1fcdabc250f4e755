from __future__ import annotations

import ipaddress
import json
from dataclasses import dataclass
from typing import Any, Protocol, Union

from .addresspool import Address, AddressPool, parse_address
from .errors import ConfigurationError, PredictableIPError
from .settings import settings
from .store import ObjectStore

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclass(frozen=True)
class NetworkParameters:
    cidr: Network
    # Range handed out by the attachment's own IPAM plugin, if any.
    provider_start: Address | None = None
    provider_end: Address | None = None


def parse_cidr(value: str) -> Network:
    try:
        return ipaddress.ip_network(str(value).strip(), strict=False)
    except ValueError as e:
        raise ConfigurationError(f"Invalid CIDR {value!r}: {e}") from e


def parse_network_attachment(config: str | dict[str, Any]) -> NetworkParameters:
    """Extract CIDR and provider range from a network attachment config.

    Expected shape (CNI config JSON)::

        {"ipam": {"range": "172.28.0.0/24",
                  "range_start": "172.28.0.30",
                  "range_end": "172.28.0.70"}}
    """
    if isinstance(config, str):
        try:
            config = json.loads(config)
        except ValueError as e:
            raise ConfigurationError(f"Network attachment config is not valid JSON: {e}") from e
    if not isinstance(config, dict):
        raise ConfigurationError("Network attachment config must be a JSON object")

    ipam = config.get("ipam")
    if not isinstance(ipam, dict) or not ipam.get("range"):
        raise ConfigurationError("Network attachment config has no ipam.range")

    cidr = parse_cidr(ipam["range"])
    start = parse_address(ipam["range_start"]) if ipam.get("range_start") else None
    end = parse_address(ipam["range_end"]) if ipam.get("range_end") else None
    for a in (start, end):
        if a is not None and a not in cidr:
            raise ConfigurationError(f"Provider range address {a} is outside {cidr}")
    return NetworkParameters(cidr=cidr, provider_start=start, provider_end=end)


def predictable_pool(params: NetworkParameters, size: int) -> AddressPool:
    """Pool of ``size`` addresses right after the provider allocation range."""
    if size < 1:
        raise ConfigurationError(f"Predictable pool size must be positive, got {size}")

    if params.provider_end is not None:
        start = params.provider_end + 1
    else:
        start = next(params.cidr.hosts(), params.cidr.network_address)

    end = start
    for _ in range(size):
        if end not in params.cidr:
            raise ConfigurationError(f"Predictable IPs: cannot allocate {size} addresses in {params.cidr}")
        end = end + 1
    return AddressPool(start, end)


class NetworkParametersProvider(Protocol):
    def resolve(self, namespace: str, attachment: str) -> NetworkParameters: ...


class AttachmentRecordProvider:
    """Reads network attachment definitions through the object store."""

    def __init__(self, store: ObjectStore):
        self.store = store

    def resolve(self, namespace: str, attachment: str) -> NetworkParameters:
        try:
            raw = self.store.get_network_attachment(namespace, attachment)
        except ConfigurationError:
            raise
        except PredictableIPError as e:
            raise ConfigurationError(f"Unable to locate network attachment {namespace}/{attachment}: {e}") from e
        except Exception as e:
            raise ConfigurationError(
                f"Failed to read network attachment {namespace}/{attachment}: {type(e).__name__}: {e}"
            ) from e
        return parse_network_attachment(raw)


class StaticNetworkProvider:
    """Network parameters fixed by configuration, same for every attachment."""

    def __init__(self, cidr: str, range_start: str | None = None, range_end: str | None = None):
        self.params = parse_network_attachment(
            {"ipam": {"range": cidr, "range_start": range_start, "range_end": range_end}}
        )

    def resolve(self, namespace: str, attachment: str) -> NetworkParameters:
        return self.params


def build_provider(store: ObjectStore) -> NetworkParametersProvider:
    if settings.network_cidr:
        return StaticNetworkProvider(settings.network_cidr, settings.network_range_start, settings.network_range_end)
    return AttachmentRecordProvider(store)


def multus_annotation(network: str, interface: str, ips: list[str]) -> str:
    """Render the ``k8s.v1.cni.cncf.io/networks`` annotation value."""
    networks = [{"name": network, "interface": interface, "ips": list(ips)}]
    return json.dumps(networks, separators=(",", ":"))
