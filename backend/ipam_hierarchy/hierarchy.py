"""
Continent -> country -> region -> host tree built from entity snapshots.
"""
import copy
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from .ip_utils import REGION_CAPACITY


class NodeType(str, Enum):
    CONTINENT = "continent"
    COUNTRY = "country"
    REGION = "region"
    HOST = "host"


class HierarchyNode(BaseModel):
    id: str
    label: str
    node_type: NodeType
    status: Optional[str] = None
    utilization: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    children: List["HierarchyNode"] = Field(default_factory=list)


def _status(value) -> Optional[str]:
    # Enum members are stored as their plain string value
    return getattr(value, "value", value)


def _group_by(items: Iterable, attribute: str, default: str = None) -> Dict[str, list]:
    groups: Dict[str, list] = {}
    for item in items:
        key = getattr(item, attribute, None) or default
        groups.setdefault(key, []).append(item)
    return groups


def _host_node(host) -> HierarchyNode:
    return HierarchyNode(
        id=host.host_id,
        label=host.hostname,
        node_type=NodeType.HOST,
        status=_status(host.status),
        metadata={"ip_address": host.ip_address},
    )


def _region_node(region, hosts: list) -> HierarchyNode:
    return HierarchyNode(
        id=region.region_id,
        label=region.region_name,
        node_type=NodeType.REGION,
        status=_status(region.status),
        utilization=region.utilization_percentage,
        metadata={
            "cidr": region.cidr,
            "allocated_count": region.allocated_hosts,
            "total_capacity": REGION_CAPACITY,
        },
        children=[_host_node(host) for host in hosts],
    )


def build_hierarchy(countries: Iterable, regions: Iterable, hosts: Iterable) -> List[HierarchyNode]:
    """
    Group countries by continent, regions by country and hosts by region.
    Input order is preserved at every level.
    """
    regions_by_country = _group_by(regions, "country")
    hosts_by_region = _group_by(hosts, "region_id")

    tree = []
    for continent, members in _group_by(countries, "continent", default="Unknown").items():
        continent_node = HierarchyNode(
            id=f"continent-{continent}",
            label=continent,
            node_type=NodeType.CONTINENT,
        )
        for country in members:
            continent_node.children.append(HierarchyNode(
                id=country.country,
                label=country.country,
                node_type=NodeType.COUNTRY,
                utilization=country.utilization_percentage,
                metadata={
                    "ip_range": country.ip_range,
                    "allocated_count": country.allocated_regions,
                    "total_capacity": country.total_capacity,
                },
                children=[
                    _region_node(region, hosts_by_region.get(region.region_id, []))
                    for region in regions_by_country.get(country.country, [])
                ],
            ))
        tree.append(continent_node)

    return tree


def _matches(node: HierarchyNode, needle: str) -> bool:
    haystack = [node.label]
    haystack.extend(str(node.metadata[key]) for key in ("cidr", "ip_address") if key in node.metadata)
    return any(needle in value.lower() for value in haystack)


def filter_tree(nodes: Iterable[HierarchyNode], query: Optional[str]) -> List[HierarchyNode]:
    """
    Return a new tree holding the nodes that match `query` (case-insensitive
    substring of label, CIDR or IP) together with their ancestors.
    A matching node keeps its whole subtree. The input is never mutated.
    """
    needle = (query or "").strip().lower()
    if not needle:
        return [node.model_copy(deep=True) for node in nodes]

    filtered = []
    for node in nodes:
        if _matches(node, needle):
            filtered.append(node.model_copy(deep=True))
            continue
        children = filter_tree(node.children, needle)
        if children:
            filtered.append(node.model_copy(update={
                "children": children,
                "metadata": copy.deepcopy(node.metadata),
            }))
    return filtered


def count_nodes(nodes: Iterable[HierarchyNode], node_type: NodeType = None) -> int:
    total = 0
    for node in nodes:
        if node_type is None or node.node_type == node_type:
            total += 1
        total += count_nodes(node.children, node_type)
    return total
