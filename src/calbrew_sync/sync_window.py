"""Window sizing for materialized occurrences."""

from .models import SyncWindow

DEFAULT_PAST_YEARS = 10
DEFAULT_FUTURE_YEARS = 10


def calculate_sync_window(
    anchor_year: int,
    current_year: int,
    past_years: int = DEFAULT_PAST_YEARS,
    future_years: int = DEFAULT_FUTURE_YEARS,
) -> SyncWindow:
    """Inclusive range of Hebrew years that should have an occurrence.

    - Anchor older than ``past_years`` before now: a fixed buffer around now.
    - Anchor in the recent past (or this year): from the anchor to
      ``future_years`` ahead of now.
    - Anchor in the future: ``future_years`` ahead of the anchor itself.
    """
    if anchor_year < current_year - past_years:
        return SyncWindow(start=current_year - past_years, end=current_year + future_years)
    if anchor_year <= current_year:
        return SyncWindow(start=anchor_year, end=current_year + future_years)
    return SyncWindow(start=anchor_year, end=anchor_year + future_years)
