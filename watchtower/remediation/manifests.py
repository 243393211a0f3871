"""
Minimal in-place manifest edits for version bumps.

Edits are textual so that everything except the bumped version string stays
byte-identical: indentation, key order, trailing newlines and comments.
"""

import json
import re
from typing import List, Optional, Tuple

from ..exceptions import ManifestEditError


NPM_DEPENDENCY_SECTIONS = (
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
)

_REQUIREMENT_LINE = re.compile(
    r"^(?P<indent>\s*)(?P<name>[A-Za-z0-9._-]+)(?P<op>\s*==\s*)(?P<version>[^\s#;,]+)(?P<rest>[^\r\n]*)(?P<eol>\r?\n?)$"
)


_SECTION_OPEN = re.compile(r"\s*:\s*\{")


def _string_end(content: str, start: int) -> int:
    """Index just past the JSON string literal opening at ``start``."""
    i = start + 1
    while i < len(content):
        char = content[i]
        if char == "\\":
            i += 2
            continue
        if char == '"':
            return i + 1
        i += 1
    return -1


def _closing_brace(content: str, start: int) -> int:
    """Index of the ``}`` closing the object whose body begins at ``start``."""
    depth = 1
    i = start
    while i < len(content):
        char = content[i]
        if char == '"':
            i = _string_end(content, i)
            if i == -1:
                return -1
            continue
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _section_span(content: str, section: str) -> Optional[Tuple[int, int]]:
    """Character span of the body of the top-level ``"section": {...}`` object."""
    depth = 0
    i = 0
    while i < len(content):
        char = content[i]
        if char == '"':
            end = _string_end(content, i)
            if end == -1:
                return None
            if depth == 1:
                opener = _SECTION_OPEN.match(content, end)
                if opener and json.loads(content[i:end]) == section:
                    close = _closing_brace(content, opener.end())
                    if close == -1:
                        return None
                    return opener.end(), close
            i = end
            continue
        if char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
        i += 1
    return None


def bump_package_json(content: str, package: str, fixed_version: str) -> str:
    """
    Set ``package`` to ``^fixed_version`` in every npm dependency section listing it.

    Raises:
        ManifestEditError: If the content is not a JSON object.
    """
    try:
        pkg = json.loads(content)
    except ValueError as e:
        raise ManifestEditError(f"package.json is not valid JSON: {e}") from e
    if not isinstance(pkg, dict):
        raise ManifestEditError("package.json root is not an object")

    entry = re.compile(r'("%s"\s*:\s*")([^"]*)(")' % re.escape(package))
    replacement = f"^{fixed_version}"

    edits: List[Tuple[int, int]] = []
    for section in NPM_DEPENDENCY_SECTIONS:
        declared = pkg.get(section)
        if not isinstance(declared, dict) or package not in declared:
            continue
        span = _section_span(content, section)
        if span is None:
            continue
        for match in entry.finditer(content, span[0], span[1]):
            if match.group(2) == declared[package]:
                edits.append((match.start(2), match.end(2)))
                break

    # Apply back to front so earlier offsets stay valid.
    for start, end in sorted(edits, reverse=True):
        content = content[:start] + replacement + content[end:]
    return content


def bump_requirements_txt(content: str, package: str, fixed_version: str) -> str:
    """
    Rewrite exactly pinned ``package==version`` lines to ``package==fixed_version``.

    The name compares case-insensitively. Trailing comments, markers and
    line endings are preserved; every other line is left untouched.
    """
    wanted = package.lower()
    lines = []
    for line in content.splitlines(keepends=True):
        match = _REQUIREMENT_LINE.match(line)
        if (
            match
            and match.group("name").lower() == wanted
            and not match.group("rest").lstrip().startswith(",")
        ):
            line = (
                f"{match.group('indent')}{match.group('name')}{match.group('op')}"
                f"{fixed_version}{match.group('rest')}{match.group('eol')}"
            )
        lines.append(line)
    return "".join(lines)
