"""Domain models for cm_catalog: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from decimal import Decimal


@dataclass
class EpisodeNft:
    """One minted serial of an episode collection and its current holder."""

    episode_id: str
    comic_id: str
    token_id: str
    serial_number: int
    owner_id: str | None           # marketplace user id, None if held off-platform
    owner_account_id: str          # chain account, e.g. "0.0.4821"
    royalty_percent: Decimal       # comic-level royalty, copied from comics
