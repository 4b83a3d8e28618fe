import dns.message
import dns.name
import dns.rrset
import pytest

from dnschain.mocks import MockResolver
from dnschain.noop import NoOpResolver
from dnschain.resolver import Response, new_request, resolver_name
from dnschain.rewriter import RewriterResolver, new_rewriter_resolver

ORIGINAL = "test.original."
REWRITTEN = "test.rewritten."


def _ptr_reply(seen):
    def respond(message):
        question = message.question[0]
        seen.append(question.name.to_text())
        reply = dns.message.make_response(message)
        reply.answer.append(dns.rrset.from_text(question.name, 1, "IN", "PTR", question.name.to_text()))
        return reply

    return respond


def _build(inner, fallback=False):
    next_resolver = MockResolver(response=Response(message=dns.message.Message()))
    sut = new_rewriter_resolver({"original": "rewritten"}, inner, fallback)
    sut.next_resolver = next_resolver
    return sut, next_resolver


def test_without_configuration_returns_inner():
    inner = MockResolver()
    assert new_rewriter_resolver({}, inner) is inner


@pytest.mark.parametrize(
    "original, rewritten",
    [
        (ORIGINAL, REWRITTEN),
        ("sub.test.original.", "sub.test.rewritten."),
        ("test.untouched.", "test.untouched."),
        ("test.original.untouched.", "test.original.untouched."),
    ],
)
def test_rewrites_names(original, rewritten):
    seen = []
    sut, next_resolver = _build(MockResolver(response_fn=_ptr_reply(seen)))
    request = new_request(original, "A")

    response = sut.resolve(request)

    assert seen == [rewritten]
    assert response.message.question[0].name == dns.name.from_text(original)
    assert response.message.answer[0].name == dns.name.from_text(original)
    assert request.message.question[0].name == dns.name.from_text(original)
    assert next_resolver.calls == []


def test_calls_next_resolver_when_inner_has_no_response():
    seen = []

    def inner_fn(request):
        seen.append(request.message.question[0].name.to_text())
        return inner.next_resolver.resolve(request)

    inner = MockResolver(resolve_fn=inner_fn)
    sut, _ = _build(inner)
    next_response = Response(message=dns.message.Message())
    next_seen = []

    def next_fn(request):
        next_seen.append(request.message.question[0].name.to_text())
        return next_response

    sut.next_resolver = MockResolver(resolve_fn=next_fn)

    assert sut.resolve(new_request(ORIGINAL, "A")) is next_response
    assert seen == [REWRITTEN]
    assert next_seen == [ORIGINAL]


def _empty_answer(request):
    return Response(message=dns.message.make_response(request.message))


def test_does_not_call_next_on_empty_answer():
    sut, next_resolver = _build(MockResolver(resolve_fn=_empty_answer))
    response = sut.resolve(new_request(ORIGINAL, "A"))
    assert next_resolver.calls == []
    assert response.message.answer == []
    assert response.message.question[0].name == dns.name.from_text(ORIGINAL)


def test_fallback_upstream_calls_next_on_empty_answer():
    sut, next_resolver = _build(MockResolver(resolve_fn=_empty_answer), fallback=True)
    response = sut.resolve(new_request(ORIGINAL, "A"))
    assert response is next_resolver.response
    assert [r.message.question[0].name.to_text() for r in next_resolver.calls] == [ORIGINAL]


def test_inner_error_is_raised_without_fallback():
    sut, next_resolver = _build(MockResolver(error=RuntimeError("inner failed")))
    request = new_request(ORIGINAL, "A")
    with pytest.raises(RuntimeError, match="inner failed"):
        sut.resolve(request)
    assert next_resolver.calls == []
    assert request.message.question[0].name == dns.name.from_text(ORIGINAL)


def test_inner_error_with_fallback_calls_next():
    sut, next_resolver = _build(MockResolver(error=RuntimeError("inner failed")), fallback=True)
    assert sut.resolve(new_request(ORIGINAL, "A")) is next_resolver.response


def test_inner_gets_noop_as_next():
    inner = MockResolver()
    RewriterResolver({"a": "b"}, inner)
    noop = inner.next_resolver
    assert isinstance(noop, NoOpResolver)
    first = noop.resolve(new_request("x.a.", "A"))
    second = noop.resolve(new_request("y.a.", "AAAA"))
    assert first is second


def test_keys_and_values_are_lower_cased():
    sut = RewriterResolver({"Original": "ReWritten"}, MockResolver())
    assert sut.rewrite == {"original": "rewritten"}


def test_configuration_includes_inner():
    inner = MockResolver()
    inner.configuration_lines = ["inner:", "config-output"]
    sut, _ = _build(inner)
    assert sut.configuration() == ["rewrite:", '  original = "rewritten"', "inner:", "config-output"]


def test_name():
    sut = new_rewriter_resolver({"not": "empty"}, MockResolver())
    assert resolver_name(sut) == "MockResolver w/ RewriterResolver"