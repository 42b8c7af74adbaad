"""
Operator selection prompts.

Prompts only run with an interactive stdin; otherwise nothing is selected
and no profile fanout is confirmed.
"""

from __future__ import annotations

import sys
from typing import Sequence


def parse_selection(answer: str, count: int) -> list[int] | None:
    """
    Parse a selection answer.

    Accepts "a"/"all" for everything, "q"/"quit" to cancel, or 1-based
    numbers separated by commas or spaces. Out-of-range and non-numeric
    tokens are ignored.

    Returns:
        Sorted 0-based indexes, or None when the operator quit
    """
    answer = answer.strip().lower()
    if answer in ("q", "quit"):
        return None
    if answer in ("a", "all"):
        return list(range(count))

    indexes = set()
    for token in answer.replace(",", " ").split():
        if token.isdigit() and 1 <= int(token) <= count:
            indexes.add(int(token) - 1)
    return sorted(indexes)


def format_candidate(index: int, candidate) -> str:
    """One prompt line: number, unit label and version jump."""
    return f"  {index}) {candidate.unit.label}: {candidate.version_jump_description()}"


class PromptChooser:
    """Asks the operator at the terminal which updates to apply."""

    def choose_targets(self, candidates: Sequence) -> list | None:
        """
        Ask which targets to update.

        Args:
            candidates: One candidate per target (unit, version_jump_description())

        Returns:
            Chosen candidates, or None if the operator quit
        """
        if not sys.stdin.isatty():
            return []

        print("\nUpdates available:\n")
        for index, candidate in enumerate(candidates, start=1):
            print(format_candidate(index, candidate))
        print("\nSelect targets to update (numbers, 'a' for all, 'q' to quit): ", end="")

        try:
            answer = input()
        except EOFError:
            # Closed stdin counts as quitting
            print()
            return None
        indexes = parse_selection(answer, len(candidates))
        if indexes is None:
            return None
        return [candidates[i] for i in indexes]

    def confirm_profiles(self, candidates: Sequence) -> bool:
        """
        Ask whether non-default profiles should receive the update too.

        Returns:
            True if the operator confirms, False otherwise
        """
        if not sys.stdin.isatty():
            return False

        print(f"\n{len(candidates)} additional profile(s) can be updated:\n")
        for candidate in candidates:
            print(f"  • {candidate.unit.label}: {candidate.version_jump_description()}")
        print("\nUpdate these profiles too? [y/N]: ", end="")

        try:
            response = input().strip().lower()
        except EOFError:
            print()
            return False
        return response in ('y', 'yes')
