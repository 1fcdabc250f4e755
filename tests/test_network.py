import json

import pytest

from predip.errors import ConfigurationError
from predip.network import (
    StaticNetworkProvider,
    multus_annotation,
    parse_network_attachment,
    predictable_pool,
)

WHEREABOUTS = json.dumps(
    {
        "cniVersion": "0.3.1",
        "name": "designate",
        "type": "macvlan",
        "master": "designate",
        "ipam": {
            "type": "whereabouts",
            "range": "172.28.0.0/24",
            "range_start": "172.28.0.30",
            "range_end": "172.28.0.70",
        },
    }
)


def test_parse_network_attachment():
    params = parse_network_attachment(WHEREABOUTS)
    assert str(params.cidr) == "172.28.0.0/24"
    assert str(params.provider_start) == "172.28.0.30"
    assert str(params.provider_end) == "172.28.0.70"


@pytest.mark.parametrize(
    "config",
    [
        "{not json",
        "[]",
        json.dumps({"name": "designate"}),
        json.dumps({"ipam": {"type": "whereabouts"}}),
        json.dumps({"ipam": {"range": "bogus"}}),
        json.dumps({"ipam": {"range": "172.28.0.0/24", "range_end": "10.0.0.9"}}),
    ],
)
def test_bad_attachment_is_configuration_error(config):
    with pytest.raises(ConfigurationError):
        parse_network_attachment(config)


def test_pool_follows_provider_range():
    pool = predictable_pool(parse_network_attachment(WHEREABOUTS), 25)
    assert str(pool.start) == "172.28.0.71"
    assert str(pool.end) == "172.28.0.96"
    assert pool.size == 25


def test_pool_without_provider_range_starts_at_first_host():
    pool = predictable_pool(StaticNetworkProvider("10.0.0.0/24").resolve("ns", "any"), 4)
    assert (str(pool.start), str(pool.end)) == ("10.0.0.1", "10.0.0.5")


def test_pool_must_fit_in_cidr():
    params = parse_network_attachment({"ipam": {"range": "172.28.0.0/24", "range_end": "172.28.0.250"}})
    with pytest.raises(ConfigurationError):
        predictable_pool(params, 25)


def test_pool_size_must_be_positive():
    with pytest.raises(ConfigurationError):
        predictable_pool(parse_network_attachment(WHEREABOUTS), 0)


def test_multus_annotation():
    value = multus_annotation("designate", "designate", ["172.28.0.71"])
    assert json.loads(value) == [{"name": "designate", "interface": "designate", "ips": ["172.28.0.71"]}]
