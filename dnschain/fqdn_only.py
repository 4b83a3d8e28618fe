"""Resolver that rejects names which are not fully qualified."""

from __future__ import annotations

import dns.message
import dns.rcode

from .resolver import ChainedResolver, Request, Response, ResponseType, extract_domain


class FqdnOnlyResolver(ChainedResolver):
    """Answers NXDOMAIN for single-label names when enabled."""

    def __init__(self, enabled: bool = False) -> None:
        super().__init__()
        self.enabled = enabled

    def resolve(self, request: Request) -> Response:
        if self.enabled and "." not in extract_domain(request.message.question[0]):
            response = dns.message.Message()
            response.set_rcode(dns.rcode.NXDOMAIN)
            return Response(message=response, rtype=ResponseType.NOTFQDN, reason="NOTFQDN")
        return self._delegate(request)

    def configuration(self) -> list[str]:
        return ["activated" if self.enabled else "deactivated"]