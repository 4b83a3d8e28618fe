"""Resolver that sends questions for configured domains to their own upstreams."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

import dns.name

from .parallel_best import DEFAULT_GROUP, ParallelBestResolver
from .resolver import (
    ChainedResolver,
    Request,
    Resolver,
    Response,
    ResponseType,
    answer_to_string,
    extract_domain,
)
from .upstream import DEFAULT_TIMEOUT, Upstream

logger = logging.getLogger(__name__)

_REASON = "CONDITIONAL"


class ConditionalUpstreamResolver(ChainedResolver):
    """Delegates a question to the resolver mapped to its domain or a parent domain."""

    def __init__(self, mapping: Optional[Mapping[str, Resolver]] = None) -> None:
        super().__init__()
        self.mapping: dict[str, Resolver] = {
            domain.lower(): resolver for domain, resolver in (mapping or {}).items()
        }

    @classmethod
    def from_upstreams(
        cls,
        upstreams: Mapping[str, Iterable[Upstream]],
        timeout: float = DEFAULT_TIMEOUT,
    ) -> ConditionalUpstreamResolver:
        """Build the resolver from upstream addresses per domain."""
        return cls({
            domain: ParallelBestResolver.from_upstreams({DEFAULT_GROUP: list(group)}, timeout)
            for domain, group in upstreams.items()
        })

    def configuration(self) -> list[str]:
        if not self.mapping:
            return ["deactivated"]
        return [f'{key} = "{resolver}"' for key, resolver in self.mapping.items()]

    def _resolver_for(self, domain: str) -> Optional[tuple[str, Resolver]]:
        if "." not in domain:
            resolver = self.mapping.get(".")
            return None if resolver is None else (".", resolver)
        candidate = domain
        while candidate:
            resolver = self.mapping.get(candidate)
            if resolver is not None:
                return candidate, resolver
            _, dot, candidate = candidate.partition(".")
            if not dot:
                break
        return None

    def _resolve_with(self, resolver: Resolver, domain: str, matched: str, request: Request) -> Response:
        question = request.message.question[0]
        question.name = dns.name.from_text(f"{domain}." if domain else ".")

        response = resolver.resolve(request)
        response.reason = _REASON
        response.rtype = ResponseType.CONDITIONAL
        if response.message is not None:
            if response.message.question:
                response.message.question[0].name = question.name
            logger.debug("received response from conditional upstream %s for %s: %s",
                         resolver, matched, answer_to_string(response.message.answer))
        return response

    def resolve(self, request: Request) -> Response:
        if self.mapping:
            domain = extract_domain(request.message.question[0])
            found = self._resolver_for(domain)
            if found is not None:
                matched, resolver = found
                return self._resolve_with(resolver, domain, matched, request)
        return self._delegate(request)