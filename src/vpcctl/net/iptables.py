"""
iptables chain operations.

Rules are FilterRule values rendered to argv; each call runs one iptables
process, optionally inside a namespace via ``ip netns exec``. Existence checks
use ``iptables -C`` so the engine only ever asks "does this exact rule exist".
"""

from __future__ import annotations

import subprocess

from vpcctl.exceptions import PrimitiveError
from vpcctl.net.rules import FilterRule
from vpcctl.utils.logger import get_logger

logger = get_logger(__name__)

IPTABLES = "iptables"


def build_command(args: list[str], namespace: str | None = None) -> list[str]:
    """Prefix iptables arguments with the binary and an optional netns exec."""
    cmd = [IPTABLES, "-w"] + args
    if namespace:
        cmd = ["ip", "netns", "exec", namespace] + cmd
    return cmd


def run_iptables(
    args: list[str], namespace: str | None = None
) -> subprocess.CompletedProcess:
    """Run iptables, raising PrimitiveError on failure."""
    cmd = build_command(args, namespace)
    logger.debug(f"Executing: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise PrimitiveError(" ".join(cmd), (e.stderr or "").strip() or str(e))
    except FileNotFoundError as e:
        raise PrimitiveError(" ".join(cmd), f"command not found: {e.filename}")


def rule_exists_sync(rule: FilterRule, namespace: str | None = None) -> bool:
    """Check whether an identical rule is present (iptables -C)."""
    cmd = build_command(rule.to_args("-C"), namespace)
    try:
        subprocess.run(cmd, check=True, capture_output=True)
        return True
    except subprocess.CalledProcessError:
        return False
    except FileNotFoundError as e:
        raise PrimitiveError(" ".join(cmd), f"command not found: {e.filename}")


def append_rule_sync(rule: FilterRule, namespace: str | None = None) -> None:
    run_iptables(rule.to_args("-A"), namespace)
    where = f" in {namespace}" if namespace else ""
    logger.info(f"Added iptables rule{where}: {rule}")


def insert_rule_sync(
    rule: FilterRule, position: int = 1, namespace: str | None = None
) -> None:
    """Insert a rule at a 1-based position so it is evaluated first."""
    run_iptables(rule.to_args("-I", position), namespace)
    where = f" in {namespace}" if namespace else ""
    logger.info(f"Inserted iptables rule at {position}{where}: {rule}")


def delete_rule_sync(rule: FilterRule, namespace: str | None = None) -> bool:
    """Delete one occurrence of a rule. Returns False if none was present."""
    if not rule_exists_sync(rule, namespace):
        return False
    run_iptables(rule.to_args("-D"), namespace)
    logger.debug(f"Deleted iptables rule: {rule}")
    return True


def flush_sync(
    chain: str | None = None, table: str = "filter", namespace: str | None = None
) -> None:
    """Flush one chain, or every chain of the table when chain is None."""
    args = ["-t", table, "-F"]
    if chain:
        args.append(chain)
    run_iptables(args, namespace)
    where = f" in {namespace}" if namespace else ""
    logger.debug(f"Flushed {table}/{chain or '*'}{where}")


def set_policy_sync(chain: str, policy: str, namespace: str | None = None) -> None:
    """Set a built-in chain's default policy (ACCEPT or DROP)."""
    run_iptables(["-P", chain, policy], namespace)
    where = f" in {namespace}" if namespace else ""
    logger.info(f"Set {chain} policy to {policy}{where}")
