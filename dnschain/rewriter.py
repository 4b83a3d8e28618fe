"""Resolver that rewrites domain suffixes for an inner resolver branch."""

from __future__ import annotations

import logging
from typing import Mapping, Optional

import dns.message
import dns.name

from .noop import NO_RESPONSE, NoOpResolver
from .resolver import ChainedResolver, Request, Resolver, Response, resolver_name

logger = logging.getLogger(__name__)


def new_rewriter_resolver(
    rewrite: Mapping[str, str],
    inner: ChainedResolver,
    fallback_upstream: bool = False,
) -> ChainedResolver:
    """Wrap the inner resolver in a rewriter, or return it as is when nothing is rewritten."""
    if not rewrite:
        return inner
    return RewriterResolver(rewrite, inner, fallback_upstream)


class RewriterResolver(ChainedResolver):
    """Runs an inner branch on the rewritten question; continues the chain if it has no answer."""

    def __init__(self, rewrite: Mapping[str, str], inner: ChainedResolver,
                 fallback_upstream: bool = False) -> None:
        super().__init__()
        self.rewrite = {key.lower(): value.lower() for key, value in rewrite.items()}
        self.inner = inner
        self.inner.next_resolver = NoOpResolver()
        self.fallback_upstream = fallback_upstream

    @property
    def name(self) -> str:
        return f"{resolver_name(self.inner)} w/ {type(self).__name__}"

    def configuration(self) -> list[str]:
        result = ["rewrite:"]
        result.extend(f'  {key} = "{value}"' for key, value in self.rewrite.items())
        result.extend(self.inner.configuration())
        return result

    def _rewrite_domain(self, domain: str) -> tuple[str, str]:
        for key, value in self.rewrite.items():
            suffix = f".{key}"
            if domain.endswith(suffix):
                return f"{domain[:-len(suffix)]}.{value}", key
        return domain, ""

    def _rewrite_request(
        self, message: dns.message.Message
    ) -> tuple[Optional[dns.message.Message], list[dns.name.Name]]:
        rewritten: Optional[dns.message.Message] = None
        original_names = [question.name for question in message.question]

        for position, name in enumerate(original_names):
            domain = name.to_text().lower().removesuffix(".")
            new_domain, key = self._rewrite_domain(domain)
            if new_domain == domain:
                continue
            if rewritten is None:
                rewritten = dns.message.from_wire(message.to_wire())
            rewritten.question[position].name = dns.name.from_text(f"{new_domain}.")
            logger.debug("rewriting %r to %r (rule %s:%s)", domain, new_domain, key, self.rewrite[key])

        return rewritten, original_names

    def resolve(self, request: Request) -> Response:
        original = request.message
        rewritten, original_names = self._rewrite_request(original)
        if rewritten is not None:
            request.message = rewritten

        logger.debug("go to inner resolver %s", resolver_name(self.inner))
        response: Optional[Response] = None
        error: Optional[Exception] = None
        try:
            response = self.inner.resolve(request)
        except Exception as exc:  # checked against the fallback setting below
            error = exc
        finally:
            # The request must be reverted before the chain continues.
            request.message = original

        no_answer = response is not None and response is not NO_RESPONSE and (
            response.message is None or not response.message.answer)
        if self.fallback_upstream and (error is not None or no_answer):
            return self._delegate(request)

        if error is not None:
            raise error

        assert response is not None
        if response is NO_RESPONSE:
            return self._delegate(request)

        if rewritten is not None and response.message is not None:
            message = response.message
            for position, name in enumerate(original_names):
                if position < len(message.question):
                    message.question[position].name = name
                if position < len(message.answer):
                    message.answer[position].name = name

        return response