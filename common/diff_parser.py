import re
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional

DiffSide = Literal["LEFT", "RIGHT"]

_HUNK_HEADER = re.compile(r'^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@')


@dataclass
class Hunk:
    """One ``@@ ... @@`` block of a single-file patch."""

    old_start: int
    old_length: int
    new_start: int
    new_length: int
    # Diff position of the hunk's first content line, once seen
    first_position: Optional[int] = None

    def start_for(self, side: DiffSide) -> int:
        return self.new_start if side == "RIGHT" else self.old_start


@dataclass(frozen=True)
class DiffPosition:
    """Where a review comment can be anchored inside a file's patch."""

    position: int
    actual_line: int
    exact: bool


def parse_hunk_header(line: str) -> Optional[Hunk]:
    """
    Parse a hunk header such as ``@@ -10,5 +10,6 @@ def foo():``.

    Args:
        line: A single patch line

    Returns:
        A Hunk, or None if the line is not a hunk header.
        Omitted lengths default to 1.
    """
    match = _HUNK_HEADER.match(line)
    if not match:
        return None
    return Hunk(
        old_start=int(match.group(1)),
        old_length=int(match.group(2)) if match.group(2) is not None else 1,
        new_start=int(match.group(3)),
        new_length=int(match.group(4)) if match.group(4) is not None else 1,
    )


def resolve_diff_position(
    patch: Optional[str],
    target_line: int,
    side: DiffSide = "RIGHT",
) -> Optional[DiffPosition]:
    """
    Map a file line number onto the cumulative diff position of a patch.

    The position is 1-based and counts every content line (context, addition,
    deletion) across all hunks of the file; hunk headers and ``+++``/``---``
    file headers are not counted. RIGHT targets match context and addition
    lines against the new-file line number, LEFT targets match context and
    deletion lines against the old-file line number. The first match wins.

    When no line matches, the comment is anchored to the first content line
    of the hunk whose start line (on the requested side) is closest to the
    target, and ``exact`` is False.

    Args:
        patch: Unified-diff patch text for one file (GitHub's ``patch`` field)
        target_line: Line number to anchor to
        side: "RIGHT" for the new file, "LEFT" for the old file

    Returns:
        DiffPosition, or None if the patch is empty or has no hunks.
    """
    if not patch:
        return None

    hunks: List[Hunk] = []
    position = 0
    old_line = 0
    new_line = 0

    for line in patch.split("\n"):
        if line.startswith("@@"):
            hunk = parse_hunk_header(line)
            if hunk:
                old_line = hunk.old_start
                new_line = hunk.new_start
                hunks.append(hunk)
            continue

        # File headers (diff/index/---/+++) only precede the first hunk;
        # inside a hunk "--- x" is a deleted "-- x".
        if not hunks:
            continue

        if line.startswith("+"):
            kind = "add"
        elif line.startswith("-"):
            kind = "del"
        elif line.startswith(" "):
            kind = "ctx"
        else:
            # "\ No newline at end of file" and blank separators
            continue

        position += 1
        if hunks and hunks[-1].first_position is None:
            hunks[-1].first_position = position

        if side == "RIGHT" and kind in ("ctx", "add") and new_line == target_line:
            return DiffPosition(position=position, actual_line=new_line, exact=True)
        if side == "LEFT" and kind in ("ctx", "del") and old_line == target_line:
            return DiffPosition(position=position, actual_line=old_line, exact=True)

        if kind != "add":
            old_line += 1
        if kind != "del":
            new_line += 1

    nearest: Optional[Hunk] = None
    best_distance = None
    for hunk in hunks:
        if hunk.first_position is None:
            continue
        distance = abs(target_line - hunk.start_for(side))
        if best_distance is None or distance < best_distance:
            best_distance = distance
            nearest = hunk

    if nearest is None:
        return None
    return DiffPosition(
        position=nearest.first_position,
        actual_line=nearest.start_for(side),
        exact=False,
    )


def find_file_patch(files: List[Dict[str, object]], path: str) -> Optional[Dict[str, object]]:
    """
    Find a file entry in a PR file list.

    Exact filename matches win; otherwise the first entry whose filename ends
    with ``path`` is used (analysis output sometimes drops leading folders).

    Args:
        files: PR files as returned by GitHubService.get_pull_request_files
        path: File path from the review comment

    Returns:
        The matching file dict, or None.
    """
    for f in files:
        if f.get("filename") == path:
            return f
    for f in files:
        filename = f.get("filename") or ""
        if isinstance(filename, str) and filename.endswith(path):
            return f
    return None


def resolve_comment_position(
    files: List[Dict[str, object]],
    path: str,
    target_line: int,
    side: DiffSide = "RIGHT",
) -> Optional[DiffPosition]:
    """Resolve a comment anchor for ``path``; None if the file has no patch in the PR."""
    entry = find_file_patch(files, path)
    if entry is None:
        return None
    patch = entry.get("patch")
    if not isinstance(patch, str):
        return None
    return resolve_diff_position(patch, target_line, side)
