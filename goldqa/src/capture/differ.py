"""Pure comparison of two UI snapshots."""
from __future__ import annotations

from typing import Dict

from goldqa.src.utils.models import CountChange, OptionCountChange, StateDelta, UISnapshot, UrlChange


def diff(before: UISnapshot, after: UISnapshot) -> StateDelta:
    """Return the fields that changed between ``before`` and ``after``.

    Selectors that disappear from ``after`` are not reported.
    """
    cascading: Dict[str, OptionCountChange] = {}
    for selector, state in before.control_states.items():
        after_state = after.control_states.get(selector)
        if after_state is None:
            continue
        if len(state.options) != len(after_state.options):
            cascading[selector] = OptionCountChange(
                before_count=len(state.options),
                after_count=len(after_state.options),
            )

    return StateDelta(
        result_count_change=(
            CountChange(before=before.result_count, after=after.result_count)
            if before.result_count != after.result_count
            else None
        ),
        url_change=UrlChange(before=before.url, after=after.url) if before.url != after.url else None,
        table_row_count_change=(
            CountChange(before=before.table_row_count, after=after.table_row_count)
            if before.table_row_count != after.table_row_count
            else None
        ),
        cascading_control_changes=cascading,
    )
