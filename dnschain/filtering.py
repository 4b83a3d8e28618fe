"""Resolver that drops queries of configured types."""

from __future__ import annotations

from typing import Iterable, Union

import dns.message
import dns.rcode
import dns.rdatatype

from .resolver import ChainedResolver, Request, Response, ResponseType


class FilteringResolver(ChainedResolver):
    """Answers queries of the configured types with an empty NOERROR response."""

    def __init__(self, query_types: Iterable[Union[str, int]] = ()) -> None:
        super().__init__()
        self.query_types = frozenset(dns.rdatatype.RdataType.make(t) for t in query_types)

    def resolve(self, request: Request) -> Response:
        if request.message.question[0].rdtype in self.query_types:
            response = dns.message.make_response(request.message)
            response.set_rcode(dns.rcode.NOERROR)
            return Response(message=response, rtype=ResponseType.FILTERED)
        return self._delegate(request)

    def configuration(self) -> list[str]:
        names = sorted(dns.rdatatype.to_text(t) for t in self.query_types)
        return [f"filtering query Types: '{', '.join(names)}'"]