# dnschain

`dnschain` builds a DNS resolver from small stages linked into a chain. A
stage either answers a request itself or passes it on to the next stage.
Messages and records are `dnspython` objects.

## Core types (`dnschain.resolver`)

- `Request` holds a `dns.message.Message` (`message`), plus `client_ip`,
  `client_names`, `client_id`, `protocol` (`RequestProtocol.UDP` or `TCP`)
  and `timestamp`.
- `Response` holds `message`, `rtype` (a `ResponseType`, such as `RESOLVED`,
  `CUSTOMDNS`, `HOSTSFILE`, `CONDITIONAL`, `FILTERED` or `NOTFQDN`) and
  `reason`.
- `Resolver` is the abstract base class. Its two methods are
  `resolve(request)` and `configuration()`, which returns lines of text.
  `ChainedResolver` adds `next_resolver`.
- `chain(*resolvers)` links the resolvers in order and returns the first one.
  `resolver_name(resolver)` returns a resolver's display name.
- Helper functions: `new_request(question, qtype, client_ip, client_names,
  client_id)`, `new_message`, `extract_domain`, `create_answer` and
  `answer_to_string`.

A chained stage that has to delegate but has no next resolver raises
`LookupError`.

## Stages

- `FilteringResolver(query_types)` (`dnschain.filtering`) answers queries of
  the listed record types with an empty NOERROR response.
- `FqdnOnlyResolver(enabled)` (`dnschain.fqdn_only`) answers NXDOMAIN for
  names that contain no dot.
- `EdeResolver(enabled)` (`dnschain.ede`) adds an Extended DNS Error option
  to each response. The option carries the response's reason. See
  `extended_error_code` and `add_extra_reasoning`.
- `CustomDNSResolver(mapping, ttl, filter_unmapped_types)`
  (`dnschain.custom_dns`) answers A and AAAA queries from a name-to-address
  mapping, including subdomains of mapped names. It also answers PTR queries
  for the mapped addresses. When `filter_unmapped_types` is false, queries
  for other record types of a mapped name go to the next stage.
- `HostsFileResolver(filepath, ttl, refresh_period, filter_loopback)`
  (`dnschain.hosts_file`) answers forward and reverse lookups from a hosts
  file. A background thread re-reads the file every `refresh_period`
  seconds; `close()` stops it. If the file cannot be read, the stage passes
  every request on. `parse_hosts(text, filter_loopback)` parses hosts-file
  text into `Host` entries.
- `ConditionalUpstreamResolver(mapping)` (`dnschain.conditional`) sends a
  question to the resolver mapped to its domain or to a parent domain. The
  key `"."` catches single-label names.
  `ConditionalUpstreamResolver.from_upstreams(upstreams, timeout)` builds
  the stage from `Upstream` addresses.
- `ClientNamesResolver(external_resolver, single_name_order,
  client_ip_mapping)` (`dnschain.client_names`) sets `request.client_names`.
  It uses, in order of preference: the client id, a static name-to-IP
  mapping, a reverse (PTR) lookup through `external_resolver`, and finally
  the IP itself. Results are cached for one hour; `flush_cache()` clears the
  cache.
- `RewriterResolver(rewrite, inner, fallback_upstream)`
  (`dnschain.rewriter`) rewrites domain suffixes before an inner branch sees
  them. It restores the original names in the response. It continues the
  main chain when the inner branch gives no response, or, with
  `fallback_upstream`, when the inner branch fails or returns no answer.
  `new_rewriter_resolver` returns `inner` unchanged when there are no
  rewrites.
- `MetricsResolver(enabled, path)` (`dnschain.metrics`) keeps these
  in-memory statistics:
  - `total_queries`, keyed by client names and query type;
  - `total_responses`, keyed by reason, return code and response type;
  - `total_errors`;
  - `durations`, a `Histogram` per response type in milliseconds.
- `QueryLoggingResolver(writer, log_type, target, retention_days,
  queue_size)` (`dnschain.query_logging`) queues every successful response
  as a `LogEntry` for a `QueryLogWriter`. A background thread writes the
  entries. Entries are dropped when the queue is full. Without a writer,
  entries go to the application log. With `retention_days > 0`,
  `clean_up()` runs every 12 hours. `close()` writes what is still queued
  and stops the threads.
- `ParallelBestResolver(resolvers_per_group)` (`dnschain.parallel_best`)
  picks the resolvers of the client's group, matched by:
  - client name, where the group name may use shell-style wildcards;
  - exact IP;
  - CIDR network;
  - otherwise the `"default"` group.

  It asks two of them, chosen at random and weighted against recent errors,
  and returns the first success. `from_upstreams(upstream_groups, timeout,
  verify)` builds it from `Upstream` addresses. With `verify`, it raises if
  no upstream of a group answers a test query.
- `UpstreamResolver(upstream, timeout, user_agent)` (`dnschain.upstream`)
  talks to one external server described by an `Upstream`. The transport
  is set by `NetProtocol`: `TCP_UDP`, `TCP_TLS` (DNS-over-TLS) or `HTTPS`
  (DNS-over-HTTPS). It retries up to three times on timeouts. Failures
  raise `UpstreamError`.
- `NoOpResolver` (`dnschain.noop`) always returns the shared empty response
  `NO_RESPONSE`. It ends a branch.

## Test doubles (`dnschain.mocks`)

- `MockResolver` returns scripted responses or errors and records each
  request in `calls`.
- `MockUDPUpstreamServer` answers DNS queries on a local UDP port. Set it up
  with `with_answer_rr`, `with_answer_msg`, `with_answer_error` or
  `with_answer_fn`, then call `start()`. It is also a context manager.

## Example

```python
import ipaddress

from dnschain.custom_dns import CustomDNSResolver
from dnschain.filtering import FilteringResolver
from dnschain.parallel_best import ParallelBestResolver
from dnschain.resolver import chain, new_request
from dnschain.upstream import Upstream

upstreams = ParallelBestResolver.from_upstreams(
    {"default": [Upstream(host="192.0.2.53", port=53)]},  # your DNS server
    timeout=2.0,
)

resolver = chain(
    FilteringResolver({"AAAA"}),
    CustomDNSResolver({"printer.lan": [ipaddress.ip_address("192.168.1.20")]}, ttl=3600),
    upstreams,
)

response = resolver.resolve(new_request("printer.lan.", "A"))
print(response.rtype, response.reason, response.message.answer)
```

## What it does not do

This is a library of resolver stages. It does not provide:

- a DNS server that listens for client queries;
- a command-line program;
- blocking lists or response caching;
- a bootstrap resolver for upstream host names, which are looked up through
  the system;
- CSV or database query log writers; only the log-based default is built
  in, and other writers implement `QueryLogWriter`;
- an HTTP endpoint for the metrics; `MetricsResolver.path` only appears in
  the configuration output.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```