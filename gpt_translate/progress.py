from __future__ import annotations

from typing import Optional

from tqdm import tqdm


def chunk_progress(total: Optional[int] = None, *, desc: str = "Translating", disable: bool = False) -> tqdm:
    """Progress bar counting translated chunks."""

    return tqdm(total=total, unit="chunk", desc=desc, disable=disable, leave=False)
