"""Traffic classifier and rule aggregator — fold flow records into peer rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flowpolicy.errors import InvalidRecordError
from flowpolicy.policy.models import PolicyRule, PortProtocol
from flowpolicy.traffic.models import Direction, PodIdentity, Protocol, TrafficRecord

logger = logging.getLogger(__name__)

_MIN_PORT = 1
_MAX_PORT = 65535


@dataclass
class AggregationStats:
    """Counters for one aggregation pass."""

    accepted: int = 0
    skipped: int = 0
    invalid: int = 0


@dataclass(frozen=True)
class ClassifiedRecord:
    """A flow record reduced to what a rule needs."""

    direction: Direction
    peer_ip: str
    port: PortProtocol


class RuleAggregator:
    """Classifies flow records relative to a target pod and builds rule sets.

    Usage:
        1. Create an aggregator for the target pod
        2. Feed it TrafficRecords via observe()
        3. Read ingress_rules / egress_rules once every record is folded
    """

    def __init__(self, target: PodIdentity) -> None:
        self._target = target
        self._rules: dict[Direction, dict[str, PolicyRule]] = {
            Direction.INGRESS: {},
            Direction.EGRESS: {},
        }
        self.stats = AggregationStats()

    @property
    def ingress_rules(self) -> list[PolicyRule]:
        return list(self._rules[Direction.INGRESS].values())

    @property
    def egress_rules(self) -> list[PolicyRule]:
        return list(self._rules[Direction.EGRESS].values())

    def observe(self, record: TrafficRecord) -> None:
        """Fold one record into the rule set, dropping it if unusable."""
        try:
            classified = classify(record, self._target)
        except InvalidRecordError as exc:
            logger.warning("Skipping invalid traffic record %s: %s", record.uuid, exc)
            self.stats.invalid += 1
            return

        if classified is None:
            self.stats.skipped += 1
            return

        rules = self._rules[classified.direction]
        rule = rules.get(classified.peer_ip)
        if rule is None:
            rules[classified.peer_ip] = PolicyRule(
                peer_ip=classified.peer_ip,
                direction=classified.direction,
                ports=[classified.port],
            )
        else:
            rule.add_port(classified.port)
        self.stats.accepted += 1

    def observe_all(self, records: list[TrafficRecord]) -> None:
        for record in records:
            self.observe(record)


def aggregate(
    records: list[TrafficRecord],
    target: PodIdentity,
) -> tuple[list[PolicyRule], list[PolicyRule]]:
    """Build deduplicated (ingress, egress) rules for the target pod."""
    aggregator = RuleAggregator(target)
    aggregator.observe_all(records)
    logger.info(
        "Aggregated %d ingress and %d egress rules for pod %s "
        "(%d accepted, %d skipped, %d invalid)",
        len(aggregator.ingress_rules),
        len(aggregator.egress_rules),
        target.name,
        aggregator.stats.accepted,
        aggregator.stats.skipped,
        aggregator.stats.invalid,
    )
    return aggregator.ingress_rules, aggregator.egress_rules


def classify(record: TrafficRecord, target: PodIdentity) -> ClassifiedRecord | None:
    """Work out direction, peer, and port for a record.

    Returns None for records that are skipped silently (no peer, or the pod
    talking to itself). Raises InvalidRecordError for malformed records.
    """
    direction = parse_direction(record.direction)
    if direction is Direction.INGRESS:
        port_text = record.target_port
    else:
        port_text = record.peer_port

    peer_ip = record.peer_ip.strip()
    if not peer_ip:
        return None
    if peer_ip == target.ip:
        logger.debug("Skipping self-traffic (peer %s == pod IP %s)", peer_ip, target.ip)
        return None

    port = parse_port(port_text)
    protocol = normalize_protocol(record.protocol)
    return ClassifiedRecord(
        direction=direction,
        peer_ip=peer_ip,
        port=PortProtocol(port=port, protocol=protocol),
    )


def parse_direction(value: str) -> Direction:
    try:
        return Direction(value.strip().upper())
    except ValueError:
        raise InvalidRecordError(f"unknown traffic direction: {value!r}") from None


def parse_port(value: str | int) -> int:
    """Parse a port into an int in [1, 65535]."""
    if isinstance(value, bool):
        raise InvalidRecordError(f"invalid port {value!r}")
    if isinstance(value, int):
        port = value
    else:
        text = str(value).strip()
        if not (text.isascii() and text.isdecimal()):
            raise InvalidRecordError(f"invalid port format {value!r}")
        port = int(text)
    if port < _MIN_PORT or port > _MAX_PORT:
        raise InvalidRecordError(
            f"port number {port} out of valid range ({_MIN_PORT}-{_MAX_PORT})"
        )
    return port


def normalize_protocol(value: str) -> Protocol:
    """Map free-text protocol names onto TCP/UDP/SCTP, defaulting to TCP."""
    try:
        return Protocol((value or "").strip().upper())
    except ValueError:
        logger.warning("Unknown protocol '%s', defaulting to TCP", value)
        return Protocol.TCP
