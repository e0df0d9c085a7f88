"""
Structured packet-filter directives.

A FilterRule describes one iptables rule as data. It is rendered to an argv
list only at the adapter boundary, so rule text never passes through a shell.
"""

from __future__ import annotations

from dataclasses import dataclass

# Conntrack states admitted for return traffic
ESTABLISHED_RELATED = "ESTABLISHED,RELATED"


@dataclass(frozen=True)
class FilterRule:
    """
    One packet-filter rule.

    Attributes:
        chain: Chain name (FORWARD, INPUT, OUTPUT, POSTROUTING).
        target: Jump target (ACCEPT, DROP, MASQUERADE).
        table: iptables table ("filter" or "nat").
        protocol: Protocol match, None for any.
        source: Source CIDR match.
        destination: Destination CIDR match.
        in_iface: Input interface match.
        out_iface: Output interface match.
        dport: Destination port match (requires a port-aware protocol).
        ctstate: Conntrack state match, e.g. "ESTABLISHED,RELATED".
    """

    chain: str
    target: str
    table: str = "filter"
    protocol: str | None = None
    source: str | None = None
    destination: str | None = None
    in_iface: str | None = None
    out_iface: str | None = None
    dport: int | None = None
    ctstate: str | None = None

    def match_args(self) -> list[str]:
        """Render the match part of the rule (everything after the chain)."""
        args: list[str] = []
        if self.protocol:
            args += ["-p", self.protocol]
        if self.source:
            args += ["-s", self.source]
        if self.destination:
            args += ["-d", self.destination]
        if self.in_iface:
            args += ["-i", self.in_iface]
        if self.out_iface:
            args += ["-o", self.out_iface]
        if self.dport is not None:
            args += ["--dport", str(self.dport)]
        if self.ctstate:
            args += ["-m", "conntrack", "--ctstate", self.ctstate]
        args += ["-j", self.target]
        return args

    def to_args(self, op: str, position: int | None = None) -> list[str]:
        """
        Render the rule for an iptables operation.

        Args:
            op: "-A" (append), "-I" (insert), "-C" (check) or "-D" (delete).
            position: 1-based rule number, only meaningful with "-I".
        """
        args = ["-t", self.table, op, self.chain]
        if position is not None:
            args.append(str(position))
        return args + self.match_args()

    def __str__(self) -> str:
        return " ".join(self.to_args("-A"))
