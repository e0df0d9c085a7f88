"""
Security policy compiler.

Loads the JSON policy document, selects the rule group for a subnet and
compiles each rule into a FilterRule for the subnet namespace:

- ingress rules -> INPUT chain, counterpart matched as source
- egress rules  -> OUTPUT chain, counterpart matched as destination
- allow -> ACCEPT, deny or anything unrecognized -> DROP
- a port of "all" produces no port match

Applying a compiled policy replaces the namespace's INPUT and OUTPUT chains
in full, so re-applying after the document changes never leaves stale rules.
"""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from vpcctl.exceptions import PolicyDocumentError, PolicyNotFoundWarning
from vpcctl.models.enums import Direction
from vpcctl.models.policy import EgressRule, IngressRule, PolicyDocument
from vpcctl.net.rules import FilterRule
from vpcctl.utils.logger import get_logger

if TYPE_CHECKING:
    from vpcctl.net.base import NetworkPrimitives

logger = get_logger(__name__)


@dataclass
class CompiledPolicy:
    """Compiled directives for one subnet, in document order."""

    subnet: str
    ingress: list[FilterRule] = field(default_factory=list)
    egress: list[FilterRule] = field(default_factory=list)
    found: bool = True

    @property
    def directives(self) -> list[FilterRule]:
        return self.ingress + self.egress


def load_policy_document(path: str | Path) -> PolicyDocument:
    """
    Read and validate a policy document.

    A missing file is an empty document. Unreadable or invalid content raises
    PolicyDocumentError.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Policy file {path} not found, no policies loaded")
        return PolicyDocument([])

    try:
        with open(path, "r") as f:
            raw = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise PolicyDocumentError(f"Cannot read policy file {path}: {e}")

    try:
        return PolicyDocument.model_validate(raw)
    except ValidationError as e:
        raise PolicyDocumentError(f"Invalid policy file {path}: {e}")


def compile_rule(rule: IngressRule | EgressRule, direction: Direction) -> FilterRule:
    """Compile one abstract rule into a namespace filter directive."""
    counterpart = rule.counterpart
    return FilterRule(
        chain=direction.chain,
        target=rule.action.target,
        protocol=rule.protocol,
        source=counterpart if direction is Direction.INGRESS else None,
        destination=counterpart if direction is Direction.EGRESS else None,
        dport=rule.scoped_port,
    )


class PolicyCompiler:
    """
    Compiles and applies per-subnet security policy.

    The document is re-read on every compile unless one was passed in, so the
    latest file contents are always what gets applied.
    """

    def __init__(
        self,
        primitives: NetworkPrimitives,
        policy_file: str | Path | None = None,
        document: PolicyDocument | None = None,
    ):
        self.primitives = primitives
        self.policy_file = policy_file
        self._document = document

    def load(self) -> PolicyDocument:
        if self._document is not None:
            return self._document
        if self.policy_file is None:
            return PolicyDocument([])
        return load_policy_document(self.policy_file)

    def compile(self, subnet_name: str) -> CompiledPolicy:
        """
        Compile the rule group for a subnet.

        Emits PolicyNotFoundWarning and returns an empty policy when the
        document has no group for the subnet.
        """
        group = self.load().get(subnet_name)
        if group is None:
            message = (
                f"No security policy found for {subnet_name}; "
                f"subnet stays deny-by-default"
            )
            logger.warning(message)
            warnings.warn(PolicyNotFoundWarning(message), stacklevel=2)
            return CompiledPolicy(subnet=subnet_name, found=False)

        return CompiledPolicy(
            subnet=subnet_name,
            ingress=[compile_rule(r, Direction.INGRESS) for r in group.ingress],
            egress=[compile_rule(r, Direction.EGRESS) for r in group.egress],
        )

    def apply(self, subnet_name: str) -> CompiledPolicy:
        """Replace the subnet namespace's INPUT/OUTPUT rules with its policy."""
        compiled = self.compile(subnet_name)
        logger.info(f"Applying security policy for {subnet_name}")

        # Full replace, never append
        for direction in Direction:
            self.primitives.flush_chain(direction.chain, namespace=subnet_name)

        for rule in compiled.ingress:
            logger.debug(f"RULE-INGRESS {subnet_name}: {rule}")
            self.primitives.append_rule(rule, namespace=subnet_name)
        for rule in compiled.egress:
            logger.debug(f"RULE-EGRESS {subnet_name}: {rule}")
            self.primitives.append_rule(rule, namespace=subnet_name)

        logger.info(
            f"Security policy applied to {subnet_name}: "
            f"{len(compiled.ingress)} ingress, {len(compiled.egress)} egress"
        )
        return compiled
