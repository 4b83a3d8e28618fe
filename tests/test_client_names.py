import dns.message
import dns.rcode
import dns.rrset
import pytest

from dnschain.client_names import ClientNamesResolver, extract_client_names
from dnschain.mocks import MockResolver, MockUDPUpstreamServer
from dnschain.resolver import Response, new_request
from dnschain.upstream import Upstream, UpstreamResolver

PTR_NAME = "25.178.168.192.in-addr.arpa."


@pytest.fixture
def next_resolver():
    return MockResolver(response=Response(message=dns.message.Message()))


def _make(next_resolver, **kwargs):
    resolver = ClientNamesResolver(**kwargs)
    resolver.next_resolver = next_resolver
    return resolver


def _resolve(sut, ip, **kwargs):
    request = new_request("google.de.", "A", ip, **kwargs)
    response = sut.resolve(request)
    assert response.message.rcode() == dns.rcode.NOERROR
    return request


def test_uses_client_id_if_set(next_resolver):
    sut = _make(next_resolver)
    request = _resolve(sut, "1.2.3.4", client_id="client123")
    assert request.client_names == ["client123"]
    assert len(next_resolver.calls) == 1


def test_uses_ip_if_client_id_not_set(next_resolver):
    sut = _make(next_resolver)
    request = _resolve(sut, "1.2.3.4", client_id="")
    assert request.client_names == ["1.2.3.4"]


@pytest.fixture
def mapped(next_resolver):
    return _make(next_resolver, client_ip_mapping={
        "client7": ["1.2.3.4", "1.2.3.5", "2a02:590:505:4700:2e4f:1503:ce74:df78"],
        "client8": ["1.2.3.5"],
    })


def test_mapping_ipv4(mapped):
    assert _resolve(mapped, "1.2.3.4").client_names == ["client7"]


def test_mapping_ipv6(mapped):
    assert _resolve(mapped, "2a02:590:505:4700:2e4f:1503:ce74:df78").client_names == ["client7"]


def test_mapping_multiple_names(mapped):
    assert sorted(_resolve(mapped, "1.2.3.5").client_names) == ["client7", "client8"]


def test_rdns_one_name_with_cache(next_resolver):
    with MockUDPUpstreamServer().with_answer_rr(f"{PTR_NAME} 600 IN PTR host1") as server:
        sut = _make(next_resolver, external_resolver=UpstreamResolver(server.start(), timeout=1.0))

        assert _resolve(sut, "192.168.178.25").client_names == ["host1"]
        assert server.call_count == 1

        assert _resolve(sut, "192.168.178.25").client_names == ["host1"]
        assert server.call_count == 1

        sut.flush_cache()
        assert _resolve(sut, "192.168.178.25").client_names == ["host1"]
        assert server.call_count == 2


def test_rdns_multiple_names(next_resolver):
    server = MockUDPUpstreamServer().with_answer_rr(
        f"{PTR_NAME} 600 IN PTR myhost1", f"{PTR_NAME} 600 IN PTR myhost2")
    with server:
        sut = _make(next_resolver, external_resolver=UpstreamResolver(server.start(), timeout=1.0))
        assert _resolve(sut, "192.168.178.25").client_names == ["myhost1", "myhost2"]
        assert server.call_count == 1


def test_rdns_order_with_one_name(next_resolver):
    with MockUDPUpstreamServer().with_answer_rr(f"{PTR_NAME} 600 IN PTR host1") as server:
        sut = _make(next_resolver, external_resolver=UpstreamResolver(server.start(), timeout=1.0),
                    single_name_order=[2, 1])
        assert _resolve(sut, "192.168.178.25").client_names == ["host1"]
        assert server.call_count == 1


def test_rdns_order_with_multiple_names(next_resolver):
    server = MockUDPUpstreamServer().with_answer_rr(
        f"{PTR_NAME} 600 IN PTR myhost1", f"{PTR_NAME} 600 IN PTR myhost2")
    with server:
        sut = _make(next_resolver, external_resolver=UpstreamResolver(server.start(), timeout=1.0),
                    single_name_order=[2, 1])
        assert _resolve(sut, "192.168.178.25").client_names == ["myhost2"]
        assert server.call_count == 1


def test_rdns_name_error_falls_back_to_ip(next_resolver):
    with MockUDPUpstreamServer().with_answer_error(dns.rcode.NXDOMAIN) as server:
        sut = _make(next_resolver, external_resolver=UpstreamResolver(server.start(), timeout=1.0))
        assert _resolve(sut, "192.168.178.25").client_names == ["192.168.178.25"]
        assert server.call_count == 1


def test_upstream_error_falls_back_to_ip(next_resolver):
    sut = _make(next_resolver, external_resolver=MockResolver(error=RuntimeError("error")))
    assert _resolve(sut, "192.168.178.25").client_names == ["192.168.178.25"]


def test_no_client_ip_gives_no_names(next_resolver):
    sut = _make(next_resolver)
    assert _resolve(sut, "").client_names == []


def test_no_upstream_uses_ip(next_resolver):
    sut = _make(next_resolver)
    assert _resolve(sut, "192.168.178.25").client_names == ["192.168.178.25"]


def test_extract_client_names():
    answers = [
        dns.rrset.from_text(PTR_NAME, 600, "IN", "PTR", "host1."),
        dns.rrset.from_text("example.com.", 600, "IN", "A", "1.2.3.4"),
    ]
    assert extract_client_names(answers, "192.168.178.25") == ["host1"]
    assert extract_client_names([], "192.168.178.25") == ["192.168.178.25"]


def test_configuration_enabled(next_resolver):
    sut = _make(
        next_resolver,
        external_resolver=UpstreamResolver(Upstream(host="host")),
        single_name_order=[1, 2],
        client_ip_mapping={"client8": ["1.2.3.5"]},
    )
    assert sut.configuration() == [
        'singleNameOrder = "[1 2]"',
        "externalResolver = \"upstream 'tcp+udp:host:53'\"",
        "cache item count = 0",
        "client IP mapping:",
        "client8 -> [1.2.3.5]",
    ]


def test_configuration_disabled(next_resolver):
    assert _make(next_resolver).configuration() == ["deactivated, use only IP address"]