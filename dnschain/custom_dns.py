"""Resolver that answers from a configured mapping of names to addresses."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Mapping, Optional, Union

import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.reversename
import dns.rrset

from .resolver import (
    ChainedResolver,
    IPAddress,
    Request,
    Response,
    ResponseType,
    answer_to_string,
    create_answer,
    extract_domain,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600
_REASON = "CUSTOM DNS"


def is_supported_type(ip: Union[str, IPAddress], question: dns.rrset.RRset) -> bool:
    """True if the address can answer the question: IPv4 for A, IPv6 for AAAA."""
    address = ipaddress.ip_address(ip)
    return (address.version == 4 and question.rdtype == dns.rdatatype.A) or (
        address.version == 6 and question.rdtype == dns.rdatatype.AAAA
    )


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


class CustomDNSResolver(ChainedResolver):
    """Answers names (and their sub-domains) with the configured addresses."""

    def __init__(
        self,
        mapping: Optional[Mapping[str, Iterable[Union[str, IPAddress]]]] = None,
        ttl: int = DEFAULT_TTL,
        filter_unmapped_types: bool = True,
    ) -> None:
        super().__init__()
        self.mapping: dict[str, list[IPAddress]] = {}
        self.reverse_addresses: dict[dns.name.Name, list[str]] = {}
        for url, ips in (mapping or {}).items():
            addresses = [ipaddress.ip_address(ip) for ip in ips]
            self.mapping[url.lower()] = addresses
            for ip in addresses:
                reverse = dns.reversename.from_address(str(ip))
                self.reverse_addresses.setdefault(reverse, []).append(url)
        self.ttl = int(ttl)
        self.filter_unmapped_types = filter_unmapped_types

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [
            f'{key} = "[{" ".join(str(ip) for ip in ips)}]"'
            for key, ips in self.mapping.items()
        ]

    def _handle_reverse(self, request: Request) -> Optional[Response]:
        question = request.message.question[0]
        if question.rdtype != dns.rdatatype.PTR:
            return None
        urls = self.reverse_addresses.get(question.name)
        if urls is None:
            return None
        response = dns.message.make_response(request.message)
        for url in urls:
            response.answer.append(
                dns.rrset.from_text(question.name, self.ttl, dns.rdataclass.IN,
                                    dns.rdatatype.PTR, _fqdn(url))
            )
        return Response(message=response, rtype=ResponseType.CUSTOMDNS, reason=_REASON)

    def _process(self, request: Request) -> Optional[Response]:
        response = dns.message.make_response(request.message)
        question = request.message.question[0]
        domain = extract_domain(question)

        while domain:
            ips = self.mapping.get(domain)
            if ips is not None:
                response.answer.extend(
                    create_answer(question, ip, self.ttl)
                    for ip in ips
                    if is_supported_type(ip, question)
                )
                if response.answer:
                    logger.debug("returning custom dns entry for %s: %s",
                                 domain, answer_to_string(response.answer))
                    return Response(message=response, rtype=ResponseType.CUSTOMDNS, reason=_REASON)
                # A mapping exists for this name, but for another record type.
                if not self.filter_unmapped_types:
                    return None
                return Response(message=response, rtype=ResponseType.CUSTOMDNS, reason=_REASON)

            _, dot, rest = domain.partition(".")
            if not dot:
                break
            domain = rest

        return None

    def resolve(self, request: Request) -> Response:
        reverse = self._handle_reverse(request)
        if reverse is not None:
            return reverse
        if self.mapping:
            response = self._process(request)
            if response is not None:
                return response
        return self._delegate(request)