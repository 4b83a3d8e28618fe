"""Resolver that queries two upstreams at once and takes the first good answer."""

from __future__ import annotations

import fnmatch
import ipaddress
import logging
import queue
import random
import threading
import time
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence, Union

from .resolver import (
    IPAddress,
    Request,
    Resolver,
    Response,
    ResponseType,
    answer_to_string,
    new_request,
)
from .upstream import DEFAULT_TIMEOUT, Upstream, UpstreamError, UpstreamResolver

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "default"
RESOLVER_COUNT = 2
ERROR_WINDOW = 60
_ERROR_MEMORY_SECONDS = 3600


@dataclass(eq=False)
class UpstreamStatus:
    """A resolver together with the time (epoch seconds) of its last error."""

    resolver: Resolver
    last_error_time: float = 0.0


def client_name_matches_group(group: str, name: str) -> bool:
    """True if the client name matches the group name, which may hold wildcards."""
    return fnmatch.fnmatchcase(name, group)


def cidr_contains_ip(cidr: str, ip: Union[str, IPAddress, None]) -> bool:
    """True if the string is a network in CIDR notation containing the address."""
    if ip is None or "/" not in cidr:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
        address = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return address in network


def _weight(status: UpstreamStatus, now: float) -> int:
    weight = float(ERROR_WINDOW)
    since = now - status.last_error_time
    if since < _ERROR_MEMORY_SECONDS:
        # A recent error lowers the weight; it recovers over the following minutes.
        weight = max(1.0, weight - (ERROR_WINDOW - since / 60))
    return int(weight)


def weighted_random(statuses: Sequence[UpstreamStatus],
                    exclude: Optional[Resolver] = None) -> UpstreamStatus:
    """Pick one status at random, preferring those without recent errors."""
    now = time.time()
    choices = [status for status in statuses if status.resolver is not exclude]
    if not choices:
        raise ValueError("no resolver left to choose from")
    return random.choices(choices, weights=[_weight(s, now) for s in choices])[0]


def pick_random(statuses: Sequence[UpstreamStatus]) -> tuple[UpstreamStatus, UpstreamStatus]:
    """Pick two statuses with different resolvers."""
    first = weighted_random(statuses)
    second = weighted_random(statuses, first.resolver)
    return first, second


def _test_resolver(resolver: Resolver) -> None:
    try:
        response = resolver.resolve(new_request("github.com.", "A"))
    except UpstreamError as exc:
        raise UpstreamError(f"test resolve of upstream server failed: {exc}") from exc
    if response.rtype is not ResponseType.RESOLVED:
        raise UpstreamError("test resolve of upstream server failed")


class ParallelBestResolver(Resolver):
    """Sends each request to two upstreams of the client's group and returns the first answer."""

    def __init__(self, resolvers_per_group: Mapping[str, Iterable[Resolver]]) -> None:
        self.resolvers_per_group: dict[str, list[UpstreamStatus]] = {
            name: [UpstreamStatus(resolver) for resolver in resolvers]
            for name, resolvers in resolvers_per_group.items()
        }
        if not self.resolvers_per_group.get(DEFAULT_GROUP):
            raise ValueError(
                "no external DNS resolvers configured as default upstream resolvers. "
                f"Please configure at least one under '{DEFAULT_GROUP}' configuration name"
            )

    @classmethod
    def from_upstreams(
        cls,
        upstream_groups: Mapping[str, Iterable[Upstream]],
        timeout: float = DEFAULT_TIMEOUT,
        verify: bool = False,
    ) -> ParallelBestResolver:
        """Build the resolver from upstream addresses, optionally checking they answer."""
        groups: dict[str, list[Resolver]] = {}
        for name, upstreams in upstream_groups.items():
            upstream_list = list(upstreams)
            resolvers: list[Resolver] = []
            failures = 0
            for upstream in upstream_list:
                resolver = UpstreamResolver(upstream, timeout)
                if verify:
                    try:
                        _test_resolver(resolver)
                    except UpstreamError as exc:
                        logger.warning("upstream group %s: %s", name, exc)
                        failures += 1
                resolvers.append(resolver)
            if verify and failures == len(upstream_list):
                raise UpstreamError(f"unable to reach any DNS resolvers configured for resolver group {name}")
            groups[name] = resolvers
        return cls(groups)

    def configuration(self) -> list[str]:
        result = ["upstream resolvers:"]
        for name, statuses in self.resolvers_per_group.items():
            result.append(f"- {name}")
            result.extend(f"  - {status.resolver}" for status in statuses)
        return result

    def __str__(self) -> str:
        groups = "; ".join(
            f"{name} ({','.join(str(s.resolver) for s in statuses)})"
            for name, statuses in self.resolvers_per_group.items()
        )
        return f"parallel upstreams '{groups}'"

    def resolvers_for_client(self, request: Request) -> list[UpstreamStatus]:
        """Statuses of the groups matching the client's names, IP or network; default otherwise."""
        result: list[UpstreamStatus] = []
        for client_name in request.client_names:
            for group, statuses in self.resolvers_per_group.items():
                if client_name_matches_group(group, client_name):
                    result.extend(statuses)

        if request.client_ip is not None:
            result.extend(self.resolvers_per_group.get(str(request.client_ip), []))
            for group, statuses in self.resolvers_per_group.items():
                if cidr_contains_ip(group, request.client_ip):
                    result.extend(statuses)

        return result or self.resolvers_per_group[DEFAULT_GROUP]

    @staticmethod
    def _resolve_with(request: Request, status: UpstreamStatus, results: queue.Queue) -> None:
        try:
            results.put(status.resolver.resolve(request))
        except Exception as exc:  # handed back to the waiting caller
            status.last_error_time = time.time()
            results.put(exc)

    def resolve(self, request: Request) -> Response:
        statuses = self.resolvers_for_client(request)

        if len(statuses) == 1:
            logger.debug("delegating to resolver %s", statuses[0].resolver)
            return statuses[0].resolver.resolve(request)

        first, second = pick_random(statuses)
        logger.debug("using %s and %s as resolver", first.resolver, second.resolver)

        results: queue.Queue = queue.Queue()
        for status in (first, second):
            threading.Thread(target=self._resolve_with, args=(request, status, results), daemon=True).start()

        errors: list[BaseException] = []
        for _ in range(RESOLVER_COUNT):
            outcome = results.get()
            if isinstance(outcome, BaseException):
                logger.debug("resolution failed from resolver, cause: %s", outcome)
                errors.append(outcome)
                continue
            if outcome.message is not None:
                logger.debug("using response from resolver: %s", answer_to_string(outcome.message.answer))
            return outcome

        raise UpstreamError(
            f"resolution was not successful, used resolvers: '{first.resolver}' and "
            f"'{second.resolver}' errors: {[str(e) for e in errors]}"
        ) from errors[-1]