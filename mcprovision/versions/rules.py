"""Platform rule evaluation for libraries and arguments."""

import re
from typing import Dict, List, Optional, Sequence

from ..utils.host import HostPlatform, normalize_arch
from .models import ArgumentToken, LibraryEntry, VersionRule


def rule_matches(rule: VersionRule, host: HostPlatform, features: Optional[Dict[str, bool]] = None) -> bool:
    """Check if every condition of a rule holds on the host; absent conditions match anything."""
    if rule.os:
        if rule.os.name and rule.os.name != host.os_name:
            return False
        if rule.os.arch and normalize_arch(rule.os.arch) != host.os_arch:
            return False
        if rule.os.version and not re.search(rule.os.version, host.os_version):
            return False
    if rule.features:
        features = features or {}
        for name, expected in rule.features.items():
            if bool(features.get(name, False)) != expected:
                return False
    return True


def evaluate_rules(rules: Optional[Sequence[VersionRule]], host: HostPlatform,
                   features: Optional[Dict[str, bool]] = None) -> bool:
    """Return whether an allow/disallow rule list admits the host.

    No rules means allowed. Otherwise evaluation starts from disallowed and every
    matching rule, in order, overrides the result with its own action, so the
    last matching rule wins.
    """
    if not rules:
        return True
    allowed = False
    for rule in rules:
        if rule_matches(rule, host, features):
            allowed = rule.action == "allow"
    return allowed


def filter_libraries(libraries: Sequence[LibraryEntry], host: HostPlatform) -> List[LibraryEntry]:
    """Libraries admitted on the host, in descriptor order.

    A coordinate listed more than once keeps the data of its last admitted entry
    at the position of its first one.
    """
    selected: Dict[str, LibraryEntry] = {}
    for library in libraries:
        if evaluate_rules(library.rules, host):
            selected[library.name] = library
    return list(selected.values())


def filter_arguments(tokens: Sequence[ArgumentToken], host: HostPlatform,
                     features: Optional[Dict[str, bool]] = None) -> List[str]:
    return [token.value for token in tokens if evaluate_rules(token.rules, host, features)]
