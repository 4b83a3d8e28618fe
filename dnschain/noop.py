"""A resolver that ends a branch of a resolver chain."""

from __future__ import annotations

from .resolver import Request, Resolver, Response

NO_RESPONSE = Response(message=None)


class NoOpResolver(Resolver):
    """Always answers with the shared empty response."""

    def resolve(self, request: Request) -> Response:
        return NO_RESPONSE

    def configuration(self) -> list[str]:
        return []