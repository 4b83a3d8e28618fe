"""Resolver that attaches Extended DNS Error information to responses."""

from __future__ import annotations

import dns.edns

from .resolver import ChainedResolver, Request, Response, ResponseType

_CODES = {
    ResponseType.RESOLVED: dns.edns.EDECode.OTHER,
    ResponseType.CACHED: dns.edns.EDECode.CACHED_ERROR,
    ResponseType.CONDITIONAL: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.CUSTOMDNS: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.HOSTSFILE: dns.edns.EDECode.FORGED_ANSWER,
    ResponseType.NOTFQDN: dns.edns.EDECode.BLOCKED,
    ResponseType.BLOCKED: dns.edns.EDECode.BLOCKED,
    ResponseType.FILTERED: dns.edns.EDECode.FILTERED,
}


def extended_error_code(response_type: ResponseType) -> int:
    """Map a response type to an Extended DNS Error info code."""
    return int(_CODES.get(response_type, dns.edns.EDECode.OTHER))


def add_extra_reasoning(response: Response) -> None:
    """Add an EDE option with the response reason, unless the code is 'other'."""
    code = extended_error_code(response.rtype)
    # The 'other' code confuses some clients, so it is never sent.
    if code <= 0 or response.message is None:
        return
    msg = response.message
    option = dns.edns.EDEOption(code, response.reason)
    options = [*msg.options, option]
    if msg.edns >= 0:
        msg.use_edns(edns=msg.edns, ednsflags=msg.ednsflags, payload=msg.payload, options=options)
    else:
        msg.use_edns(edns=0, options=options)


class EdeResolver(ChainedResolver):
    """Adds the reason of each response as extended error information."""

    def __init__(self, enabled: bool = False) -> None:
        super().__init__()
        self.enabled = enabled

    def resolve(self, request: Request) -> Response:
        response = self._delegate(request)
        if self.enabled:
            add_extra_reasoning(response)
        return response

    def configuration(self) -> list[str]:
        return ["activated" if self.enabled else "deactivated"]