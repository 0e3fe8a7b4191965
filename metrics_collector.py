"""Prometheus collector that scrapes iptables on every collection."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Tuple

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from firewall_client import FirewallCommandError
from rule_aggregator import AggregatedMetrics, RuleCapture, aggregate
from ruleset_parser import RulesetError, parse_iptables_save

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MetricShape:
    name: str
    documentation: str
    labels: Tuple[str, ...] = ()

    def gauge(self, value=None) -> GaugeMetricFamily:
        if self.labels:
            return GaugeMetricFamily(self.name, self.documentation, labels=self.labels)
        return GaugeMetricFamily(self.name, self.documentation, value=value)

    def counter(self) -> CounterMetricFamily:
        return CounterMetricFamily(self.name, self.documentation, labels=self.labels)


@dataclass(frozen=True)
class MetricDescriptors:
    scrape_duration: MetricShape
    scrape_success: MetricShape
    default_packets: MetricShape
    default_bytes: MetricShape
    rule_packets: MetricShape
    rule_bytes: MetricShape


def default_descriptors(namespace: str = "iptables") -> MetricDescriptors:
    default_labels = ("table", "chain", "policy")
    rule_labels = ("table", "chain", "rule")
    return MetricDescriptors(
        scrape_duration=MetricShape(
            f"{namespace}_scrape_duration_seconds",
            "iptables_exporter: Duration of scraping iptables.",
        ),
        scrape_success=MetricShape(
            f"{namespace}_scrape_success",
            "iptables_exporter: Whether scraping iptables succeeded.",
        ),
        default_packets=MetricShape(
            f"{namespace}_default_packets_total",
            "iptables_exporter: Total packets matching a chain's default policy.",
            default_labels,
        ),
        default_bytes=MetricShape(
            f"{namespace}_default_bytes_total",
            "iptables_exporter: Total bytes matching a chain's default policy.",
            default_labels,
        ),
        rule_packets=MetricShape(
            f"{namespace}_rule_packets_total",
            "iptables_exporter: Total packets matching a rule.",
            rule_labels,
        ),
        rule_bytes=MetricShape(
            f"{namespace}_rule_bytes_total",
            "iptables_exporter: Total bytes matching a rule.",
            rule_labels,
        ),
    )


class IptablesCollector:
    """Custom collector: each ``collect`` runs one parse-and-aggregate scrape.

    ``source`` returns the raw ``iptables-save -c`` output; it is usually
    :meth:`firewall_client.FirewallClient.save`.
    """

    def __init__(
        self,
        source: Callable[[], str],
        capture: RuleCapture,
        descriptors: MetricDescriptors,
    ) -> None:
        self.source = source
        self.capture = capture
        self.descriptors = descriptors

    def describe(self) -> Iterator[Metric]:
        d = self.descriptors
        yield d.scrape_duration.gauge()
        yield d.scrape_success.gauge()
        yield d.default_packets.counter()
        yield d.default_bytes.counter()
        yield d.rule_packets.counter()
        yield d.rule_bytes.counter()

    def scrape(self) -> AggregatedMetrics:
        return aggregate(parse_iptables_save(self.source()), self.capture)

    def collect(self) -> Iterator[Metric]:
        d = self.descriptors
        start = time.monotonic()
        try:
            metrics = self.scrape()
        except (RulesetError, FirewallCommandError) as exc:
            logger.error("Scraping iptables failed: %s", exc)
            yield d.scrape_duration.gauge(time.monotonic() - start)
            yield d.scrape_success.gauge(0)
            return
        yield d.scrape_duration.gauge(time.monotonic() - start)
        yield d.scrape_success.gauge(1)

        default_packets = d.default_packets.counter()
        default_bytes = d.default_bytes.counter()
        for table, chain, policy, packets, bytes_ in metrics.default_series():
            default_packets.add_metric([table, chain, policy], float(packets))
            default_bytes.add_metric([table, chain, policy], float(bytes_))

        rule_packets = d.rule_packets.counter()
        rule_bytes = d.rule_bytes.counter()
        for table, chain, identifier, packets, bytes_ in metrics.rule_series():
            rule_packets.add_metric([table, chain, identifier], float(packets))
            rule_bytes.add_metric([table, chain, identifier], float(bytes_))

        yield default_packets
        yield default_bytes
        yield rule_packets
        yield rule_bytes


__all__ = [
    "IptablesCollector",
    "MetricDescriptors",
    "MetricShape",
    "default_descriptors",
]
