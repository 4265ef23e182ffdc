from __future__ import annotations

from .models import BracketMatch, BracketState


def round_name(round_index: int, total_rounds: int) -> str:
    remaining = total_rounds - round_index
    if remaining == 1:
        return "Final"
    if remaining == 2:
        return "Semifinals"
    if remaining == 3:
        return "Quarterfinals"
    return f"Round of {2**remaining}"


def _match_lines(match: BracketMatch) -> list[str]:
    lines = [
        f"  [{match.match_id}] {match.slot_one.label()} vs {match.slot_two.label()}"
    ]
    winner = match.winner_slot()
    if winner is not None:
        lines.append(f"    -> Winner: {winner.label()}")
    elif match.is_void:
        lines.append("    -> No entrants")
    else:
        lines.append("    -> Winner: TBD")
    if match.scheduled_time:
        lines.append(f"    Scheduled: {match.scheduled_time}")
    if match.location:
        lines.append(f"    Location: {match.location}")
    return lines


def render_bracket(state: BracketState, *, shrink_completed: bool = False) -> str:
    """Plain-text view of the bracket, one block per round."""
    champion = state.champion()
    if not state.rounds:
        return f"Champion: {champion.label()}" if champion is not None else ""

    start_index = 0
    if shrink_completed:
        last_index = len(state.rounds) - 1
        for idx, round_ in enumerate(state.rounds):
            if not round_.is_decided:
                start_index = idx
                break
        else:
            start_index = last_index

    total_rounds = len(state.rounds)
    lines: list[str] = []
    for idx, round_ in enumerate(state.rounds[start_index:], start=start_index):
        lines.append(round_name(idx, total_rounds))
        for match in round_.matches:
            lines.extend(_match_lines(match))
        lines.append("")
    if lines and not lines[-1]:
        lines.pop()
    if champion is not None:
        lines.append(f"Champion: {champion.label()}")
    return "\n".join(line.rstrip() for line in lines)


__all__ = ["render_bracket", "round_name"]
