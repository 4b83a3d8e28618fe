"""Test doubles: a scriptable resolver and a local UDP DNS server."""

from __future__ import annotations

import socket
import threading
from typing import Callable, Optional

import dns.exception
import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset

from .resolver import ChainedResolver, Request, Response, ResponseType
from .upstream import NetProtocol, Upstream

AnswerFn = Callable[[dns.message.Message], Optional[dns.message.Message]]


class MockResolver(ChainedResolver):
    """Resolver whose answers are scripted by the caller; records every call."""

    def __init__(
        self,
        resolve_fn: Optional[Callable[[Request], Response]] = None,
        response_fn: Optional[Callable[[dns.message.Message], dns.message.Message]] = None,
        answer_fn: Optional[Callable[[int, str], Optional[dns.message.Message]]] = None,
        response: Optional[Response] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        super().__init__()
        self.resolve_fn = resolve_fn
        self.response_fn = response_fn
        self.answer_fn = answer_fn
        self.response = response
        self.error = error
        self.configuration_lines: list[str] = []
        self.calls: list[Request] = []

    def configuration(self) -> list[str]:
        return list(self.configuration_lines)

    def resolve(self, request: Request) -> Response:
        self.calls.append(request)

        if self.resolve_fn is not None:
            return self.resolve_fn(request)

        if self.response_fn is not None:
            return Response(message=self.response_fn(request.message), rtype=ResponseType.RESOLVED)

        if self.answer_fn is not None:
            for question in request.message.question:
                answer = self.answer_fn(question.rdtype, question.name.to_text())
                if answer is not None:
                    return Response(message=answer, rtype=ResponseType.RESOLVED)
            reply = dns.message.make_response(request.message)
            reply.set_rcode(dns.rcode.BADNAME)
            return Response(message=reply, rtype=ResponseType.RESOLVED)

        if self.error is not None:
            raise self.error
        if self.response is None:
            raise LookupError("mock resolver has no response configured")
        return self.response


def _parse_record(text: str) -> dns.rrset.RRset:
    tokens = text.split()
    if len(tokens) < 3:
        raise ValueError(f"invalid resource record: {text!r}")
    owner = dns.name.from_text(tokens[0])
    index = 1
    ttl = 3600
    if tokens[index].isdigit():
        ttl = int(tokens[index])
        index += 1
    rdclass = dns.rdataclass.IN
    try:
        rdclass = dns.rdataclass.from_text(tokens[index])
        index += 1
    except dns.exception.DNSException:
        pass
    if index + 1 >= len(tokens):
        raise ValueError(f"invalid resource record: {text!r}")
    try:
        rdtype = dns.rdatatype.from_text(tokens[index])
        return dns.rrset.from_text(owner, ttl, rdclass, rdtype, " ".join(tokens[index + 1:]),
                                   origin=dns.name.root, relativize=False)
    except dns.exception.DNSException as exc:
        raise ValueError(f"invalid resource record {text!r}: {exc}") from exc


class MockUDPUpstreamServer:
    """A DNS server on a local UDP port that answers with a configured function."""

    def __init__(self) -> None:
        self._answer_fn: Optional[AnswerFn] = None
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._stopped = threading.Event()
        self._count_lock = threading.Lock()
        self._call_count = 0

    def __enter__(self) -> MockUDPUpstreamServer:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def call_count(self) -> int:
        """Number of requests answered so far."""
        with self._count_lock:
            return self._call_count

    def with_answer_rr(self, *records: str) -> MockUDPUpstreamServer:
        """Answer every request with the given records in zone-file notation."""
        parsed = [_parse_record(text) for text in records]

        def answer(_request: dns.message.Message) -> dns.message.Message:
            msg = dns.message.Message()
            for rrset in parsed:
                target = msg.find_rrset(msg.answer, rrset.name, rrset.rdclass, rrset.rdtype, create=True)
                target.update(rrset)
            return msg

        self._answer_fn = answer
        return self

    def with_answer_msg(self, answer: dns.message.Message) -> MockUDPUpstreamServer:
        """Answer every request with the given message."""
        self._answer_fn = lambda _request: answer
        return self

    def with_answer_error(self, rcode: int) -> MockUDPUpstreamServer:
        """Answer every request with an empty message carrying the return code."""

        def answer(_request: dns.message.Message) -> dns.message.Message:
            msg = dns.message.Message()
            msg.set_rcode(rcode)
            return msg

        self._answer_fn = answer
        return self

    def with_answer_fn(self, fn: AnswerFn) -> MockUDPUpstreamServer:
        """Answer with the function's result; None makes the server send garbage."""
        self._answer_fn = fn
        return self

    def start(self) -> Upstream:
        """Start serving and return the server's address."""
        if self._socket is not None:
            raise RuntimeError("server is already started")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.bind(("127.0.0.1", 0))
        sock.settimeout(0.05)
        self._socket = sock
        self._thread = threading.Thread(target=self._serve, args=(sock,), daemon=True)
        self._thread.start()
        host, port = sock.getsockname()
        return Upstream(net=NetProtocol.TCP_UDP, host=host, port=port)

    def close(self) -> None:
        """Stop serving and release the port."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._socket is not None:
            self._socket.close()

    def _reply(self, query: dns.message.Message) -> Optional[bytes]:
        answer = self._answer_fn(query) if self._answer_fn is not None else None
        with self._count_lock:
            self._call_count += 1
        if answer is None:
            return None
        reply = dns.message.make_response(query)
        reply.answer = list(answer.answer)
        reply.authority = list(answer.authority)
        reply.additional = list(answer.additional)
        if answer.rcode() != dns.rcode.NOERROR:
            reply.set_rcode(answer.rcode())
        return reply.to_wire()

    def _serve(self, sock: socket.socket) -> None:
        while not self._stopped.is_set():
            try:
                data, address = sock.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                break
            try:
                query = dns.message.from_wire(data)
            except dns.exception.DNSException:
                continue
            wire = self._reply(query)
            try:
                sock.sendto(b"dummy" if wire is None else wire, address)
            except OSError:
                break