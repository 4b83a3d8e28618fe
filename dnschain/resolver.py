"""Core types of a DNS resolver chain: requests, responses and resolvers."""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Iterable, Optional, Sequence, Union

import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class ResponseType(Enum):
    """How a response was produced."""

    RESOLVED = auto()
    CACHED = auto()
    CONDITIONAL = auto()
    CUSTOMDNS = auto()
    HOSTSFILE = auto()
    NOTFQDN = auto()
    BLOCKED = auto()
    FILTERED = auto()

    def __str__(self) -> str:
        return self.name


class RequestProtocol(Enum):
    """Transport protocol a request arrived on."""

    TCP = auto()
    UDP = auto()

    def __str__(self) -> str:
        return self.name


@dataclass
class Request:
    """A DNS request together with what is known about the client."""

    message: dns.message.Message
    client_ip: Optional[IPAddress] = None
    client_names: list[str] = field(default_factory=list)
    client_id: str = ""
    protocol: RequestProtocol = RequestProtocol.UDP
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(eq=False)
class Response:
    """A DNS response with the reason it was given."""

    message: Optional[dns.message.Message]
    rtype: ResponseType = ResponseType.RESOLVED
    reason: str = ""


class Resolver(ABC):
    """A component that answers DNS requests."""

    @abstractmethod
    def resolve(self, request: Request) -> Response:
        """Resolve the request, raising on failure."""

    @abstractmethod
    def configuration(self) -> list[str]:
        """Describe the current configuration as lines of text."""

    @property
    def name(self) -> str:
        """A user-friendly name of the resolver."""
        return type(self).__name__


class ChainedResolver(Resolver, ABC):
    """A resolver that can hand a request on to the next one in a chain."""

    def __init__(self) -> None:
        self.next_resolver: Optional[Resolver] = None

    def _delegate(self, request: Request) -> Response:
        if self.next_resolver is None:
            raise LookupError(f"{self.name} has no next resolver configured")
        logger.debug("%s: go to next resolver %s", self.name, resolver_name(self.next_resolver))
        return self.next_resolver.resolve(request)


def chain(*resolvers: Resolver) -> Resolver:
    """Link the resolvers in order and return the first of them."""
    if not resolvers:
        raise ValueError("a chain needs at least one resolver")
    for current, following in zip(resolvers, resolvers[1:]):
        if isinstance(current, ChainedResolver):
            current.next_resolver = following
    return resolvers[0]


def resolver_name(resolver: object) -> str:
    """Return the user-friendly name of a resolver."""
    if isinstance(resolver, Resolver):
        return resolver.name
    return type(resolver).__name__


def new_message(question: str, qtype: Union[str, int]) -> dns.message.Message:
    """Build a query message holding a single question."""
    return dns.message.make_query(question, dns.rdatatype.RdataType.make(qtype))


def new_request(
    question: str,
    qtype: Union[str, int],
    client_ip: Union[str, IPAddress, None] = None,
    client_names: Iterable[str] = (),
    client_id: str = "",
) -> Request:
    """Build a request for one question from the given client."""
    ip = ipaddress.ip_address(client_ip) if client_ip else None
    return Request(
        message=new_message(question, qtype),
        client_ip=ip,
        client_names=list(client_names),
        client_id=client_id,
    )


def extract_domain(question: dns.rrset.RRset) -> str:
    """Return the lower-case question name without its trailing dot."""
    return question.name.to_text().lower().removesuffix(".")


def create_answer(question: dns.rrset.RRset, ip: Union[str, IPAddress], ttl: int) -> dns.rrset.RRset:
    """Build an A or AAAA record answering the question with the address."""
    rdtype = question.rdtype
    if rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
        raise ValueError(f"unsupported query type {dns.rdatatype.to_text(rdtype)}")
    return dns.rrset.from_text(question.name, ttl, dns.rdataclass.IN, rdtype, str(ip))


def _record_to_string(rrset: dns.rrset.RRset) -> Iterable[str]:
    type_name = dns.rdatatype.to_text(rrset.rdtype)
    for rdata in rrset:
        if rrset.rdtype in (dns.rdatatype.A, dns.rdatatype.AAAA):
            yield f"{type_name} ({rdata.address})"
        elif rrset.rdtype in (dns.rdatatype.CNAME, dns.rdatatype.PTR):
            yield f"{type_name} ({rdata.target})"
        else:
            yield f"{rrset.name} {rrset.ttl} {dns.rdataclass.to_text(rrset.rdclass)} {type_name} {rdata}"


def answer_to_string(answers: Sequence[dns.rrset.RRset]) -> str:
    """Render answer records as a short, human readable string."""
    return ", ".join(text for rrset in answers for text in _record_to_string(rrset))