import socket
import time
from unittest.mock import patch

import dns.message
import dns.rcode
import dns.rdatatype
import pytest

from dnschain.mocks import MockUDPUpstreamServer
from dnschain.resolver import RequestProtocol, ResponseType, create_answer, new_request
from dnschain.upstream import NetProtocol, Upstream, UpstreamError, UpstreamResolver


@pytest.fixture
def server():
    srv = MockUDPUpstreamServer()
    yield srv
    srv.close()


def assert_record(answers, name, rdtype, ttl, value):
    assert len(answers) == 1
    rrset = answers[0]
    assert rrset.name.to_text() == name
    assert rrset.rdtype == rdtype
    assert rrset.ttl == ttl
    assert [str(rd) for rd in rrset] == [value]


def test_returns_answer_from_dns_upstream(server):
    upstream = server.with_answer_rr("example.com 123 IN A 123.124.122.122").start()
    sut = UpstreamResolver(upstream)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.message.rcode() == dns.rcode.NOERROR
    assert resp.rtype == ResponseType.RESOLVED
    assert_record(resp.message.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")
    assert resp.reason == f"RESOLVED ({upstream})"


def test_returns_response_code_from_dns_upstream(server):
    upstream = server.with_answer_error(dns.rcode.NXDOMAIN).start()
    sut = UpstreamResolver(upstream)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.message.rcode() == dns.rcode.NXDOMAIN
    assert resp.rtype == ResponseType.RESOLVED
    assert resp.reason == f"RESOLVED ({upstream})"


def test_failing_upstream_raises(server):
    upstream = server.with_answer_fn(lambda request: None).start()
    sut = UpstreamResolver(upstream)

    with pytest.raises(UpstreamError) as info:
        sut.resolve(new_request("example.com.", "A"))
    assert info.value.timeout is False
    assert server.call_count == 1


def _slow_upstream(server, attempts_with_timeout):
    counter = {"calls": 0}

    def answer(request):
        counter["calls"] += 1
        if counter["calls"] <= attempts_with_timeout:
            time.sleep(0.35)
        msg = dns.message.make_response(request)
        msg.answer.append(create_answer(request.question[0], "123.124.122.122", 123))
        return msg

    upstream = server.with_answer_fn(answer).start()
    return UpstreamResolver(upstream, timeout=0.2), counter


def test_two_timeouts_resolved_with_third_attempt(server):
    sut, counter = _slow_upstream(server, 2)

    resp = sut.resolve(new_request("example.com.", "A"))

    assert resp.message.rcode() == dns.rcode.NOERROR
    assert_record(resp.message.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")
    assert resp.rtype == ResponseType.RESOLVED
    assert counter["calls"] == 3


def test_three_timeouts_raise_error(server):
    sut, _ = _slow_upstream(server, 3)

    with pytest.raises(UpstreamError) as info:
        sut.resolve(new_request("example.com.", "A"))
    assert "i/o timeout" in str(info.value)
    assert info.value.timeout is True


def test_tcp_request_falls_back_to_udp(server):
    upstream = server.with_answer_rr("example.com 123 IN A 123.124.122.122").start()
    sut = UpstreamResolver(upstream)
    request = new_request("example.com.", "A")
    request.protocol = RequestProtocol.TCP

    resp = sut.resolve(request)

    assert_record(resp.message.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")
    assert server.call_count == 1


def test_doh_upstream_with_unknown_host_raises():
    sut = UpstreamResolver(Upstream(net=NetProtocol.HTTPS, host="wronghost.example.com"))

    with patch("socket.getaddrinfo", side_effect=socket.gaierror(-2, "Name or service not known")):
        with pytest.raises(UpstreamError) as info:
            sut.resolve(new_request("example.com.", "A"))
    assert "no such host" in str(info.value)


def test_doh_upstream_string():
    upstream = Upstream(net=NetProtocol.HTTPS, host="dns.example.com")
    assert upstream.port == 443
    assert str(upstream) == "https://dns.example.com:443"


def test_missing_host_raises():
    with pytest.raises(UpstreamError):
        UpstreamResolver(Upstream()).resolve(new_request("example.com.", "A"))


def test_configuration_is_empty():
    assert UpstreamResolver(Upstream()).configuration() == []