import dns.message
import pytest

from dnschain.metrics import Histogram, MetricsResolver
from dnschain.mocks import MockResolver
from dnschain.resolver import Response, new_request


def _sut(enabled=True, next_resolver=None):
    resolver = MetricsResolver(enabled=enabled)
    resolver.next_resolver = next_resolver or MockResolver(response=Response(message=dns.message.Message()))
    return resolver


def test_records_request_metrics():
    sut = _sut()
    response = sut.resolve(new_request("example.com.", "A", client_names=["client"]))
    assert response.message.rcode() == 0
    assert sut.total_queries[("client", "A")] == 1
    assert sut.total_responses[("", "NOERROR", "RESOLVED")] == 1
    assert sut.durations["RESOLVED"].count == 1
    assert sut.total_errors == 0


def test_records_errors():
    sut = _sut(next_resolver=MockResolver(error=RuntimeError("error")))
    with pytest.raises(RuntimeError):
        sut.resolve(new_request("example.com.", "A", client_names=["client"]))
    assert sut.total_errors == 1
    assert sut.total_queries[("client", "A")] == 1
    assert sut.durations["err"].count == 1


def test_disabled_records_nothing():
    sut = _sut(enabled=False)
    sut.resolve(new_request("example.com.", "A", client_names=["client"]))
    assert sut.total_queries == {}
    assert sut.durations == {}


def test_histogram_is_cumulative():
    histogram = Histogram()
    histogram.observe(7)
    histogram.observe(3000)
    assert histogram.count == 2
    assert histogram.total == 3007
    assert histogram.counts[:3] == [0, 1, 1]
    assert histogram.counts[-1] == 1


def test_configuration():
    assert _sut().configuration() == ["metrics:", "  Enable = true", "  Path   = /metrics"]