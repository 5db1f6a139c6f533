# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Version Matcher

Single responsibility: Decide whether an application version satisfies a
catalog's wildcard version constraint.

Constraints are dot-separated segments compared positionally. A "*" segment
matches any single segment, and a constraint shorter than the version leaves
the remaining version segments unconstrained:

    matches("2024.1.3", "2024.1.*")  -> True
    matches("2024.1.3", "2024")      -> True
    matches("2023.9.0", "2024.*")    -> False
"""

WILDCARD = "*"


def matches(app_version: str, constraint: str) -> bool:
    """
    Check an application version against a wildcard constraint.

    Malformed input (empty strings, empty segments) never matches.

    Args:
        app_version: Running application version, e.g. "2024.1.3"
        constraint: Constraint pattern, e.g. "2024.1.*"

    Returns:
        True if every non-wildcard segment equals the version segment at the
        same position
    """
    if not app_version or not constraint:
        return False

    version_parts = app_version.strip().split(".")
    constraint_parts = constraint.strip().split(".")
    if "" in version_parts or "" in constraint_parts:
        return False

    for index, segment in enumerate(constraint_parts):
        # A wildcard still has to stand for an existing segment
        if index >= len(version_parts):
            return False
        if segment == WILDCARD:
            continue
        if segment != version_parts[index]:
            return False

    return True


def matches_any(app_version: str, constraints) -> bool:
    """True if app_version satisfies at least one of the constraints"""
    return any(matches(app_version, c) for c in constraints)
