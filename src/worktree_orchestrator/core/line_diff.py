"""Line-level diff of one file between two versions, using LCS alignment."""

from pathlib import Path
from typing import List, Sequence, Tuple

from worktree_orchestrator.models.diff import DiffLine, DiffLineType


def longest_common_subsequence(
    old_lines: Sequence[str], new_lines: Sequence[str]
) -> List[Tuple[int, int]]:
    """
    Compute matched index pairs of the longest common subsequence.

    Classic O(m*n) dynamic programming table followed by a backtrack.

    Returns:
        (old_index, new_index) pairs in ascending order.
    """
    m = len(old_lines)
    n = len(new_lines)

    table = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(1, m + 1):
        row = table[i]
        prev = table[i - 1]
        old_line = old_lines[i - 1]
        for j in range(1, n + 1):
            if old_line == new_lines[j - 1]:
                row[j] = prev[j - 1] + 1
            else:
                row[j] = max(prev[j], row[j - 1])

    matches: List[Tuple[int, int]] = []
    x, y = m, n
    while x > 0 and y > 0:
        if old_lines[x - 1] == new_lines[y - 1]:
            matches.append((x - 1, y - 1))
            x -= 1
            y -= 1
        elif table[x - 1][y] > table[x][y - 1]:
            x -= 1
        else:
            y -= 1

    matches.reverse()
    return matches


def diff_lines(old_lines: Sequence[str], new_lines: Sequence[str]) -> List[DiffLine]:
    """
    Align two line sequences and number every emitted line.

    Lines skipped on the old side are DELETED, lines skipped on the new side
    are ADDED, matched pairs are UNCHANGED. Old and new line counters only
    advance on their own side.
    """
    result: List[DiffLine] = []
    old_number = 1
    new_number = 1

    def emit(line_type: DiffLineType, content: str) -> None:
        nonlocal old_number, new_number
        result.append(
            DiffLine(
                old_line_number=old_number if line_type != DiffLineType.ADDED else None,
                new_line_number=new_number if line_type != DiffLineType.DELETED else None,
                content=content.rstrip("\r"),
                type=line_type,
            )
        )
        if line_type != DiffLineType.ADDED:
            old_number += 1
        if line_type != DiffLineType.DELETED:
            new_number += 1

    old_idx = 0
    new_idx = 0
    for match_old, match_new in longest_common_subsequence(old_lines, new_lines):
        while old_idx < match_old:
            emit(DiffLineType.DELETED, old_lines[old_idx])
            old_idx += 1
        while new_idx < match_new:
            emit(DiffLineType.ADDED, new_lines[new_idx])
            new_idx += 1
        emit(DiffLineType.UNCHANGED, old_lines[old_idx])
        old_idx += 1
        new_idx += 1

    while old_idx < len(old_lines):
        emit(DiffLineType.DELETED, old_lines[old_idx])
        old_idx += 1
    while new_idx < len(new_lines):
        emit(DiffLineType.ADDED, new_lines[new_idx])
        new_idx += 1

    return result


def compute_line_diff(
    old_text: str,
    new_text: str,
    relative_path: str,
    old_label: str = "Local",
    new_label: str = "Worktree",
) -> List[DiffLine]:
    """
    Render a diff of two versions of a file.

    Args:
        old_text: Content of the old version.
        new_text: Content of the new version.
        relative_path: Path shown in the header lines.
        old_label: Source label of the old version.
        new_label: Source label of the new version.

    Returns:
        Two HEADER lines followed by the aligned body.
    """
    header = [
        DiffLine(content=f"--- {old_label}: {relative_path}", type=DiffLineType.HEADER),
        DiffLine(content=f"+++ {new_label}: {relative_path}", type=DiffLineType.HEADER),
    ]
    return header + diff_lines(old_text.split("\n"), new_text.split("\n"))


def diff_files(
    base_root: str | Path,
    compare_root: str | Path,
    relative_path: str,
) -> List[DiffLine]:
    """
    Render the diff of one file between two directory trees.

    A file missing on one side is treated as empty.

    Raises:
        FileNotFoundError: If the file exists on neither side.
    """
    base_file = Path(base_root) / relative_path
    compare_file = Path(compare_root) / relative_path

    if not base_file.is_file() and not compare_file.is_file():
        raise FileNotFoundError(f"{relative_path} exists in neither tree")

    old_text = base_file.read_text(encoding="utf-8", errors="replace") if base_file.is_file() else ""
    new_text = compare_file.read_text(encoding="utf-8", errors="replace") if compare_file.is_file() else ""

    return compute_line_diff(old_text, new_text, relative_path)
