"""Progress helpers (tqdm integration)."""

from __future__ import annotations

from typing import Optional

from tqdm import tqdm


def progress_bar(total: int, desc: Optional[str] = None, enabled: bool = True) -> tqdm:
    """Return a tqdm bar counting finished jobs; disabled bars are silent no-ops."""
    formatted_desc = f"· {desc:<12} " if desc else ""
    return tqdm(
        total=total,
        desc=formatted_desc,
        bar_format="{desc}: {percentage:3.0f}%|{bar:30}| {n_fmt}/{total_fmt}",
        ncols=80,
        disable=not enabled or total == 0,
        leave=False,
    )
