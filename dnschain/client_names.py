"""Resolver that determines client names from IP mappings or reverse lookups."""

from __future__ import annotations

import ipaddress
import logging
import threading
import time
from typing import Iterable, Mapping, Optional, Sequence, Union

import dns.message
import dns.rdatatype
import dns.reversename
import dns.rrset

from .resolver import ChainedResolver, IPAddress, Request, Resolver, Response

logger = logging.getLogger(__name__)

CACHE_TTL = 3600.0


class _ExpiringCache:
    def __init__(self, ttl: float) -> None:
        self._ttl = ttl
        self._items: dict[str, tuple[list[str], float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[list[str]]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires = item
            if expires <= time.monotonic():
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: list[str]) -> None:
        with self._lock:
            self._items[key] = (value, time.monotonic() + self._ttl)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        now = time.monotonic()
        with self._lock:
            self._items = {k: v for k, v in self._items.items() if v[1] > now}
            return len(self._items)


def extract_client_names(answers: Iterable[dns.rrset.RRset], fallback_ip: Union[str, IPAddress]) -> list[str]:
    """Host names from PTR records, or the fallback address if there are none."""
    names = [
        rdata.target.to_text().removesuffix(".")
        for rrset in answers
        if rrset.rdtype == dns.rdatatype.PTR
        for rdata in rrset
    ]
    return names or [str(fallback_ip)]


class ClientNamesResolver(ChainedResolver):
    """Sets the client names of each request before handing it on."""

    def __init__(
        self,
        external_resolver: Optional[Resolver] = None,
        single_name_order: Sequence[int] = (),
        client_ip_mapping: Optional[Mapping[str, Iterable[Union[str, IPAddress]]]] = None,
    ) -> None:
        super().__init__()
        self.external_resolver = external_resolver
        self.single_name_order = list(single_name_order)
        self.client_ip_mapping: dict[str, list[IPAddress]] = {
            name: [ipaddress.ip_address(ip) for ip in ips]
            for name, ips in (client_ip_mapping or {}).items()
        }
        self._cache = _ExpiringCache(CACHE_TTL)

    def configuration(self) -> list[str]:
        if self.external_resolver is None and not self.client_ip_mapping:
            return ["deactivated, use only IP address"]
        order = " ".join(str(i) for i in self.single_name_order)
        result = [f'singleNameOrder = "[{order}]"']
        if self.external_resolver is not None:
            result.append(f'externalResolver = "{self.external_resolver}"')
        result.append(f"cache item count = {len(self._cache)}")
        if self.client_ip_mapping:
            result.append("client IP mapping:")
            result.extend(
                f"{name} -> [{' '.join(str(ip) for ip in ips)}]"
                for name, ips in self.client_ip_mapping.items()
            )
        return result

    def resolve(self, request: Request) -> Response:
        names = self._client_names(request)
        request.client_names = names
        logger.debug("client_names: %s", "; ".join(names))
        return self._delegate(request)

    def flush_cache(self) -> None:
        """Forget all cached client names."""
        self._cache.clear()

    def _client_names(self, request: Request) -> list[str]:
        if request.client_id:
            return [request.client_id]
        ip = request.client_ip
        if ip is None:
            return []
        cached = self._cache.get(str(ip))
        if cached is not None:
            return cached
        names = self._resolve_client_names(ip)
        self._cache.put(str(ip), names)
        return names

    def _names_from_mapping(self, ip: IPAddress) -> list[str]:
        return [name for name, ips in self.client_ip_mapping.items() for mapped in ips if mapped == ip]

    def _resolve_client_names(self, ip: IPAddress) -> list[str]:
        mapped = self._names_from_mapping(ip)
        if mapped:
            return mapped
        if self.external_resolver is None:
            return [str(ip)]

        query = dns.message.make_query(dns.reversename.from_address(str(ip)), dns.rdatatype.PTR)
        try:
            response = self.external_resolver.resolve(Request(message=query))
        except Exception as exc:  # any failure falls back to the address itself
            logger.error("can't resolve client name: %s", exc)
            return [str(ip)]

        answers = response.message.answer if response.message is not None else []
        names = extract_client_names(answers, ip)

        if self.single_name_order:
            result: list[str] = []
            for position in self.single_name_order:
                if 0 < position <= len(names):
                    result = [names[position - 1]]
                    break
        else:
            result = names

        logger.debug("resolved client name(s) from external resolver: %s", "; ".join(result))
        return result