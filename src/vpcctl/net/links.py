"""Link, address and route operations over a pyroute2 IPRoute/NetNS handle."""

from __future__ import annotations

import socket

from vpcctl.net.base import LinkInfo, RouteInfo
from vpcctl.utils.logger import get_logger

logger = get_logger(__name__)

IFF_UP = 0x1
MAIN_TABLE = 254


def find_link_index(ipr, name: str) -> int | None:
    """Return the index of the named link, or None if it does not exist."""
    for link in ipr.get_links():
        if link.get_attr("IFLA_IFNAME") == name:
            return link["index"]
    return None


def require_link_index(ipr, name: str) -> int:
    idx = find_link_index(ipr, name)
    if idx is None:
        raise LookupError(f"link {name} not found")
    return idx


def _link_kind(link) -> str | None:
    linkinfo = link.get_attr("IFLA_LINKINFO")
    if not linkinfo:
        return None
    return linkinfo.get_attr("IFLA_INFO_KIND")


def list_links_sync(ipr) -> list[LinkInfo]:
    """Describe every link visible through the handle."""
    links = list(ipr.get_links())
    names = {link["index"]: link.get_attr("IFLA_IFNAME") for link in links}

    result = []
    for link in links:
        master_idx = link.get_attr("IFLA_MASTER")
        result.append(
            LinkInfo(
                name=link.get_attr("IFLA_IFNAME"),
                kind=_link_kind(link),
                alias=link.get_attr("IFLA_IFALIAS"),
                master=names.get(master_idx) if master_idx else None,
                up=bool(link["flags"] & IFF_UP),
            )
        )
    return result


def create_bridge_sync(ipr, name: str, alias: str | None = None) -> None:
    """Create a bridge device, tagging it with an alias when given."""
    logger.info(f"Creating bridge: {name}")
    ipr.link("add", ifname=name, kind="bridge")

    if alias:
        idx = require_link_index(ipr, name)
        ipr.link("set", index=idx, ifalias=alias)


def create_veth_sync(ipr, name: str, peer: str) -> None:
    """Create a veth pair name <-> peer."""
    logger.info(f"Creating veth pair: {name} <-> {peer}")
    ipr.link("add", ifname=name, kind="veth", peer=peer)


def attach_to_bridge_sync(ipr, name: str, bridge: str) -> None:
    """Enslave a link to a bridge."""
    idx = require_link_index(ipr, name)
    bridge_idx = require_link_index(ipr, bridge)
    ipr.link("set", index=idx, master=bridge_idx)
    logger.debug(f"Attached {name} to bridge {bridge}")


def move_to_namespace_sync(ipr, name: str, namespace: str) -> None:
    """Move a link from the handle's namespace into a named namespace."""
    idx = require_link_index(ipr, name)
    ipr.link("set", index=idx, net_ns_fd=namespace)
    logger.debug(f"Moved {name} into namespace {namespace}")


def set_link_state_sync(ipr, name: str, state: str) -> bool:
    """Set a link "up" or "down". Returns False if the link is absent."""
    idx = find_link_index(ipr, name)
    if idx is None:
        return False
    ipr.link("set", index=idx, state=state)
    return True


def delete_link_sync(ipr, name: str) -> bool:
    """Delete a link. Returns False if it was already gone."""
    idx = find_link_index(ipr, name)
    if idx is None:
        logger.debug(f"Link {name} not found for deletion")
        return False
    ipr.link("del", index=idx)
    logger.info(f"Deleted link: {name}")
    return True


def add_address_sync(ipr, device: str, address: str) -> None:
    """Assign "ip/prefix" to a device."""
    ip, prefixlen = address.split("/")
    idx = require_link_index(ipr, device)
    logger.info(f"Adding IP {address} to {device}")
    ipr.addr("add", index=idx, address=ip, prefixlen=int(prefixlen))


def list_addresses_sync(ipr, device: str | None = None) -> list[str]:
    """List IPv4 addresses as "ip/prefix", optionally for one device."""
    if device is None:
        msgs = ipr.get_addr(family=socket.AF_INET)
    else:
        idx = find_link_index(ipr, device)
        if idx is None:
            return []
        msgs = ipr.get_addr(family=socket.AF_INET, index=idx)

    return [f"{msg.get_attr('IFA_ADDRESS')}/{msg['prefixlen']}" for msg in msgs]


def add_route_sync(
    ipr, dst: str, device: str | None = None, gateway: str | None = None
) -> None:
    """
    Add a route.

    dst "default" installs the default route; otherwise dst is a CIDR.
    """
    kwargs = {}
    if dst != "default":
        kwargs["dst"] = dst
    if gateway:
        kwargs["gateway"] = gateway
    if device:
        kwargs["oif"] = require_link_index(ipr, device)

    logger.info(f"Adding route {dst} via {gateway or '-'} dev {device or '-'}")
    ipr.route("add", **kwargs)


def list_routes_sync(ipr) -> list[RouteInfo]:
    """List IPv4 routes of the main table."""
    names = {link["index"]: link.get_attr("IFLA_IFNAME") for link in ipr.get_links()}
    routes = []
    for msg in ipr.get_routes(family=socket.AF_INET, table=MAIN_TABLE):
        dst = msg.get_attr("RTA_DST")
        routes.append(
            RouteInfo(
                dst=f"{dst}/{msg['dst_len']}" if dst else "default",
                gateway=msg.get_attr("RTA_GATEWAY"),
                device=names.get(msg.get_attr("RTA_OIF")),
            )
        )
    return routes
