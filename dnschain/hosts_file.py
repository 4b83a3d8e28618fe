"""Resolver that answers from an /etc/hosts style file."""

from __future__ import annotations

import ipaddress
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Union

import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.reversename
import dns.rrset

from .custom_dns import is_supported_type
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
DEFAULT_REFRESH_PERIOD = 3600.0
_REASON = "HOSTS FILE"
_MIN_COLUMNS = 2
_LOOPBACK4 = ipaddress.ip_network("127.0.0.0/8")
_LOOPBACK6 = ipaddress.ip_address("::1")


@dataclass(frozen=True)
class Host:
    """One entry of a hosts file."""

    ip: IPAddress
    hostname: str
    aliases: tuple[str, ...] = ()


def _is_loopback(ip: IPAddress) -> bool:
    if ip.version == 4:
        return ip in _LOOPBACK4
    return ip == _LOOPBACK6


def parse_hosts(text: str, filter_loopback: bool = False) -> list[Host]:
    """Parse hosts file content, skipping comments and invalid entries."""
    hosts = []
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        fields = trimmed.split("#", 1)[0].split()
        if len(fields) < _MIN_COLUMNS:
            continue
        try:
            ip = ipaddress.ip_address(fields[0])
        except ValueError:
            continue
        if filter_loopback and _is_loopback(ip):
            continue
        hosts.append(Host(ip=ip, hostname=fields[1], aliases=tuple(fields[2:])))
    return hosts


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else f"{name}."


class HostsFileResolver(ChainedResolver):
    """Answers forward and reverse lookups from a hosts file, refreshed periodically."""

    def __init__(
        self,
        filepath: Union[str, Path] = "",
        ttl: int = DEFAULT_TTL,
        refresh_period: float = DEFAULT_REFRESH_PERIOD,
        filter_loopback: bool = False,
    ) -> None:
        super().__init__()
        self.filepath = str(filepath) if filepath else ""
        self.ttl = int(ttl)
        self.refresh_period = float(refresh_period)
        self.filter_loopback = filter_loopback
        self.hosts: list[Host] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        try:
            self.parse_hosts_file()
        except OSError:
            logger.warning("cannot parse hosts file: %s, hosts file resolving is disabled", self.filepath)
            self.filepath = ""
            return

        if self.filepath and self.refresh_period > 0:
            self._thread = threading.Thread(target=self._periodic_update, daemon=True)
            self._thread.start()

    def __enter__(self) -> HostsFileResolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop refreshing the hosts file."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def parse_hosts_file(self) -> None:
        """Read the hosts file again; raises OSError if it cannot be read."""
        if not self.filepath:
            return
        text = Path(self.filepath).read_text(encoding="utf-8", errors="replace")
        self.hosts = parse_hosts(text, self.filter_loopback)

    def _periodic_update(self) -> None:
        while not self._stop.wait(self.refresh_period):
            logger.debug("refreshing hosts file %s", self.filepath)
            try:
                self.parse_hosts_file()
            except OSError as exc:
                logger.error("can't refresh hosts file: %s", exc)

    def _ptr(self, question: dns.rrset.RRset, target: str) -> dns.rrset.RRset:
        return dns.rrset.from_text(question.name, self.ttl, dns.rdataclass.IN,
                                   dns.rdatatype.PTR, _fqdn(target))

    def _handle_reverse(self, request: Request) -> Optional[Response]:
        question = request.message.question[0]
        if question.rdtype != dns.rdatatype.PTR:
            return None
        for host in self.hosts:
            if dns.reversename.from_address(str(host.ip)) == question.name:
                response = dns.message.make_response(request.message)
                response.answer.extend(
                    self._ptr(question, name) for name in (host.hostname, *host.aliases)
                )
                return Response(message=response, rtype=ResponseType.HOSTSFILE, reason=_REASON)
        return None

    def _host_answers(self, host: Host, domain: str, question: dns.rrset.RRset) -> list[dns.rrset.RRset]:
        if not is_supported_type(host.ip, question):
            return []
        return [
            create_answer(question, host.ip, self.ttl)
            for name in (host.hostname, *host.aliases)
            if name == domain
        ]

    def resolve(self, request: Request) -> Response:
        if not self.filepath:
            return self._delegate(request)

        reverse = self._handle_reverse(request)
        if reverse is not None:
            return reverse

        hosts = self.hosts
        if hosts:
            response = dns.message.make_response(request.message)
            question = request.message.question[0]
            domain = extract_domain(question)
            for host in hosts:
                response.answer.extend(self._host_answers(host, domain, question))
            if response.answer:
                logger.debug("returning hosts file entry for %s: %s",
                             domain, answer_to_string(response.answer))
                return Response(message=response, rtype=ResponseType.HOSTSFILE, reason=_REASON)

        return self._delegate(request)

    def configuration(self) -> list[str]:
        if not self.filepath or not self.hosts:
            return ["deactivated"]
        return [
            f"hosts file path: {self.filepath}",
            f"hosts TTL: {self.ttl}",
            f"hosts refresh period: {timedelta(seconds=self.refresh_period)}",
            f"filter loopback addresses: {str(self.filter_loopback).lower()}",
        ]