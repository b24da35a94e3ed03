"""
Deterministic ordering of image definitions
"""
import functools
from typing import Iterable, List, Optional

import semver

from ..models import ImageDef


def _parse_version(raw: str) -> Optional[semver.Version]:
    text = raw.strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    try:
        # "7.2" is shorthand for "7.2.0"
        return semver.Version.parse(text, optional_minor_and_patch=True)
    except ValueError:
        return None


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_versions(a: str, b: str) -> int:
    """
    Compare two dotted version strings with semantic-version precedence.

    Pre-releases sort before their release and build metadata is ignored.

    Strings that do not parse as versions sort before all valid versions and
    compare to each other lexicographically.
    """
    parsed_a = _parse_version(a)
    parsed_b = _parse_version(b)

    if parsed_a is None and parsed_b is None:
        return _cmp(a, b)
    if parsed_a is None:
        return -1
    if parsed_b is None:
        return 1
    return parsed_a.compare(parsed_b)


def compare_image_defs(a: ImageDef, b: ImageDef) -> int:
    """
    Total order over image definitions, returning -1, 0 or 1.

    Keys in priority order: version, build number, community before
    enterprise, non-serverless before serverless, non-columnar before columnar.
    """
    result = compare_versions(a.version, b.version)
    if result != 0:
        return result

    result = _cmp(a.build_no, b.build_no)
    if result != 0:
        return result

    # community edition sorts first
    result = _cmp(not a.use_community_edition, not b.use_community_edition)
    if result != 0:
        return result

    result = _cmp(a.use_serverless, b.use_serverless)
    if result != 0:
        return result

    return _cmp(a.use_columnar, b.use_columnar)


def sort_image_defs(defs: Iterable[ImageDef], reverse: bool = False) -> List[ImageDef]:
    """Sort image definitions with compare_image_defs"""
    return sorted(defs, key=functools.cmp_to_key(compare_image_defs), reverse=reverse)
