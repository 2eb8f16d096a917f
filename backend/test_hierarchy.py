"""
Tests for building and filtering the continent/country/region/host tree.
"""
import pytest

from ipam_hierarchy.hierarchy import NodeType, build_hierarchy, count_nodes, filter_tree
from ipam_hierarchy.models import HostStatus, RegionStatus


# Plain snapshot stand-ins; build_hierarchy only reads attributes
class MockCountry:
    def __init__(self, country, continent, x_start, x_end, allocated_regions=0):
        self.country = country
        self.continent = continent
        self.x_start = x_start
        self.x_end = x_end
        self.allocated_regions = allocated_regions
        self.total_capacity = (x_end - x_start + 1) * 256
        self.utilization_percentage = allocated_regions / self.total_capacity * 100
        self.ip_range = f"10.{x_start}.0.0 - 10.{x_end}.255.255"


class MockRegion:
    def __init__(self, region_id, country, name, x, y, allocated_hosts=0, status=RegionStatus.ACTIVE):
        self.region_id = region_id
        self.country = country
        self.region_name = name
        self.cidr = f"10.{x}.{y}.0/24"
        self.status = status
        self.allocated_hosts = allocated_hosts
        self.utilization_percentage = round(allocated_hosts / 254 * 100, 2)


class MockHost:
    def __init__(self, host_id, region_id, hostname, ip_address, status=HostStatus.ACTIVE):
        self.host_id = host_id
        self.region_id = region_id
        self.hostname = hostname
        self.ip_address = ip_address
        self.status = status


@pytest.fixture
def tree():
    countries = [
        MockCountry("India", "Asia", 0, 29, allocated_regions=2),
        MockCountry("Japan", "Asia", 46, 53),
        MockCountry("Finland", "Europe", 98, 107, allocated_regions=1),
        MockCountry("Atlantis", None, 250, 250),
    ]
    regions = [
        MockRegion("r-1", "India", "Mumbai DC", 0, 0, allocated_hosts=2),
        MockRegion("r-2", "India", "Bangalore DC", 0, 1, status=RegionStatus.RETIRED),
        MockRegion("r-3", "Finland", "Helsinki Edge", 98, 0, allocated_hosts=1),
    ]
    hosts = [
        MockHost("h-1", "r-1", "gateway", "10.0.0.1"),
        MockHost("h-2", "r-1", "web-001", "10.0.0.2"),
        MockHost("h-3", "r-3", "edge-proxy", "10.98.0.1", status=HostStatus.RELEASED),
    ]
    return build_hierarchy(countries, regions, hosts)


class TestBuildHierarchy:

    def test_continents_in_input_order(self, tree):
        assert [node.label for node in tree] == ["Asia", "Europe", "Unknown"]
        assert all(node.node_type == NodeType.CONTINENT for node in tree)

    def test_countries_grouped(self, tree):
        asia = tree[0]
        assert [c.label for c in asia.children] == ["India", "Japan"]
        assert asia.children[0].metadata["total_capacity"] == 7680
        assert asia.children[1].children == []

    def test_regions_and_hosts(self, tree):
        india = tree[0].children[0]
        mumbai, bangalore = india.children
        assert mumbai.metadata["cidr"] == "10.0.0.0/24"
        assert mumbai.metadata["total_capacity"] == 254
        assert mumbai.status == "Active"
        assert bangalore.status == "Retired"
        assert [h.metadata["ip_address"] for h in mumbai.children] == ["10.0.0.1", "10.0.0.2"]

    def test_host_status_is_plain_string(self, tree):
        helsinki = tree[1].children[0].children[0]
        assert helsinki.children[0].status == "Released"

    def test_count_nodes(self, tree):
        assert count_nodes(tree) == 3 + 4 + 3 + 3
        assert count_nodes(tree, NodeType.HOST) == 3

    def test_empty_inputs(self):
        assert build_hierarchy([], [], []) == []


class TestFilterTree:

    def test_empty_query_returns_copy(self, tree):
        filtered = filter_tree(tree, "  ")
        assert filtered == tree
        assert filtered[0] is not tree[0]

    def test_match_keeps_ancestors_only(self, tree):
        filtered = filter_tree(tree, "mumbai")
        assert [n.label for n in filtered] == ["Asia"]
        india = filtered[0].children
        assert [c.label for c in india] == ["India"]
        assert [r.label for r in india[0].children] == ["Mumbai DC"]

    def test_matching_node_keeps_subtree(self, tree):
        filtered = filter_tree(tree, "India")
        regions = filtered[0].children[0].children
        assert len(regions) == 2
        assert count_nodes(filtered, NodeType.HOST) == 2

    def test_match_on_ip_and_cidr(self, tree):
        by_ip = filter_tree(tree, "10.98.0.1")
        assert count_nodes(by_ip, NodeType.HOST) == 1
        by_cidr = filter_tree(tree, "10.0.1.0/24")
        assert [r.label for r in by_cidr[0].children[0].children] == ["Bangalore DC"]

    def test_no_match(self, tree):
        assert filter_tree(tree, "nowhere") == []

    def test_input_not_mutated(self, tree):
        before = count_nodes(tree)
        filter_tree(tree, "gateway")
        assert count_nodes(tree) == before

    def test_ancestor_metadata_is_not_shared(self, tree):
        filtered = filter_tree(tree, "mumbai")
        india = filtered[0].children[0]
        india.metadata["allocated_count"] = -1
        assert tree[0].children[0].metadata["allocated_count"] == 2
        assert india.metadata is not tree[0].children[0].metadata
