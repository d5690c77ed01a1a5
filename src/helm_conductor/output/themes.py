"""Sync result colors."""

from helm_conductor.models import SyncState

RESULT_COLORS: dict[SyncState, str] = {
    SyncState.SUCCESSFUL: "green",
    SyncState.FAILED: "red bold",
}


def styled_result(state: SyncState) -> str:
    color = RESULT_COLORS.get(state, "white")
    return f"[{color}]{state.value}[/{color}]"
