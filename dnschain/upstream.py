"""Resolver that forwards requests to an external DNS server."""

from __future__ import annotations

import http.client
import ipaddress
import logging
import socket
import ssl
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import dns.exception
import dns.message
import dns.query
import dns.rcode

from .resolver import IPAddress, Request, RequestProtocol, Resolver, Response, answer_to_string

logger = logging.getLogger(__name__)

DNS_CONTENT_TYPE = "application/dns-message"
DEFAULT_TIMEOUT = 2.0
RETRY_ATTEMPTS = 3
RETRY_DELAY = 0.1


class NetProtocol(Enum):
    """Transport used to talk to an upstream server."""

    TCP_UDP = "tcp+udp"
    TCP_TLS = "tcp-tls"
    HTTPS = "https"

    def __str__(self) -> str:
        return self.value


_DEFAULT_PORTS = {
    NetProtocol.TCP_UDP: 53,
    NetProtocol.TCP_TLS: 853,
    NetProtocol.HTTPS: 443,
}


@dataclass(frozen=True)
class Upstream:
    """Address of an external DNS server."""

    net: NetProtocol = NetProtocol.TCP_UDP
    host: str = ""
    port: int = 0
    path: str = ""
    common_name: str = ""

    def __post_init__(self) -> None:
        if not self.port:
            object.__setattr__(self, "port", _DEFAULT_PORTS[self.net])

    @property
    def is_default(self) -> bool:
        """True when no server is configured."""
        return not self.host

    def __str__(self) -> str:
        if self.is_default:
            return "no upstream"
        host = f"[{self.host}]" if ":" in self.host else self.host
        separator = "//" if self.net is NetProtocol.HTTPS else ""
        return f"{self.net}:{separator}{host}:{self.port}{self.path}"


class UpstreamError(Exception):
    """Raised when an upstream server could not answer a request."""

    def __init__(self, message: str, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class UpstreamResolver(Resolver):
    """Sends requests to one external DNS server, retrying on timeouts."""

    def __init__(self, upstream: Upstream, timeout: float = DEFAULT_TIMEOUT, user_agent: str = "") -> None:
        self.upstream = upstream
        self.timeout = timeout
        self.user_agent = user_agent
        self.ssl_context = ssl.create_default_context()
        self.ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
        self._ip_index = 0
        self._lock = threading.Lock()

    def __str__(self) -> str:
        return f"upstream '{self.upstream}'"

    def configuration(self) -> list[str]:
        return []

    @property
    def _server_name(self) -> str:
        return self.upstream.common_name or self.upstream.host

    def _upstream_ips(self) -> list[IPAddress]:
        host = self.upstream.host
        if not host:
            raise UpstreamError("no upstream host configured")
        try:
            return [ipaddress.ip_address(host)]
        except ValueError:
            pass
        try:
            infos = socket.getaddrinfo(host, self.upstream.port, type=socket.SOCK_STREAM)
        except socket.gaierror as exc:
            raise UpstreamError(f"lookup {host}: no such host ({exc})") from exc
        ips = list(dict.fromkeys(ipaddress.ip_address(info[4][0]) for info in infos))
        if not ips:
            raise UpstreamError(f"lookup {host}: no such host")
        return ips

    def _format_url(self, ip: IPAddress) -> str:
        if self.upstream.net is NetProtocol.HTTPS:
            return f"https://{ip}:{self.upstream.port}{self.upstream.path}"
        host = f"[{ip}]" if ip.version == 6 else str(ip)
        return f"{host}:{self.upstream.port}"

    def _exchange_dns(self, message: dns.message.Message, ip: IPAddress,
                      protocol: RequestProtocol) -> dns.message.Message:
        where = str(ip)
        port = self.upstream.port
        if self.upstream.net is NetProtocol.TCP_TLS:
            return dns.query.tls(message, where, timeout=self.timeout, port=port,
                                 ssl_context=self.ssl_context, server_hostname=self._server_name)
        if protocol is RequestProtocol.TCP:
            try:
                return dns.query.tcp(message, where, timeout=self.timeout, port=port)
            except ConnectionRefusedError:
                logger.debug("tcp connection to %s refused, falling back to udp", where)
        return dns.query.udp(message, where, timeout=self.timeout, port=port)

    def _exchange_https(self, message: dns.message.Message, ip: IPAddress) -> dns.message.Message:
        raw = socket.create_connection((str(ip), self.upstream.port), timeout=self.timeout)
        try:
            tls_socket = self.ssl_context.wrap_socket(raw, server_hostname=self._server_name)
        except BaseException:
            raw.close()
            raise
        connection = http.client.HTTPConnection(str(ip), self.upstream.port, timeout=self.timeout)
        connection.sock = tls_socket
        try:
            connection.request(
                "POST",
                self.upstream.path or "/",
                body=message.to_wire(),
                headers={
                    "Host": self.upstream.host,
                    "User-Agent": self.user_agent,
                    "Content-Type": DNS_CONTENT_TYPE,
                },
            )
            reply = connection.getresponse()
            body = reply.read()
        finally:
            connection.close()

        if reply.status != http.HTTPStatus.OK:
            raise UpstreamError(f"http return code should be {int(http.HTTPStatus.OK)}, "
                                f"but received {reply.status}")
        content_type = reply.getheader("content-type") or ""
        if content_type != DNS_CONTENT_TYPE:
            raise UpstreamError(f"http return content type should be '{DNS_CONTENT_TYPE}', "
                                f"but was '{content_type}'")
        try:
            return dns.message.from_wire(body)
        except dns.exception.DNSException as exc:
            raise UpstreamError(f"can't unpack message: {exc}") from exc

    def _call_external(self, message: dns.message.Message, ip: IPAddress,
                       protocol: RequestProtocol) -> dns.message.Message:
        if self.upstream.net is NetProtocol.HTTPS:
            return self._exchange_https(message, ip)
        return self._exchange_dns(message, ip, protocol)

    def _current_ip(self, ips: list[IPAddress]) -> IPAddress:
        with self._lock:
            return ips[self._ip_index % len(ips)]

    def _next_ip(self) -> None:
        with self._lock:
            self._ip_index += 1

    def resolve(self, request: Request) -> Response:
        ips = self._upstream_ips()
        last_error: Optional[UpstreamError] = None

        for attempt in range(1, RETRY_ATTEMPTS + 1):
            ip = self._current_ip(ips)
            url = self._format_url(ip)
            started = time.monotonic()
            try:
                reply = self._call_external(request.message, ip, request.protocol)
            except (OSError, dns.exception.DNSException, http.client.HTTPException,
                    UpstreamError, ValueError) as exc:
                timed_out = isinstance(exc, (TimeoutError, dns.exception.Timeout))
                detail = "i/o timeout" if timed_out else (str(exc) or type(exc).__name__)
                error = UpstreamError(f"can't resolve request via upstream server {url}: {detail}",
                                      timeout=timed_out)
                if not timed_out:
                    raise error from exc
                last_error = error
                logger.debug("%s, retrying... (attempt %d/%d, upstream %s, ip %s)",
                             error, attempt, RETRY_ATTEMPTS, self.upstream, ip)
                if attempt < RETRY_ATTEMPTS:
                    self._next_ip()
                    time.sleep(RETRY_DELAY)
                continue

            logger.debug(
                "received response from upstream %s (%s): answer=%s, return_code=%s, "
                "protocol=%s, net=%s, response_time_ms=%d",
                self.upstream, ip, answer_to_string(reply.answer), dns.rcode.to_text(reply.rcode()),
                request.protocol, self.upstream.net, int((time.monotonic() - started) * 1000),
            )
            return Response(message=reply, reason=f"RESOLVED ({self.upstream})")

        assert last_error is not None
        raise last_error