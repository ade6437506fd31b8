"""Mapping from backend ad selector tokens to the creatives shipped with the screen."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True, slots=True)
class AdAsset:
    token: str
    path: str
    display_name: str

    @property
    def is_video(self) -> bool:
        return self.path.endswith(".mp4")


NEUTRAL_AD = "neutral"

AD_CATALOG: Dict[str, AdAsset] = {
    "man": AdAsset("man", "/ads/man.gif", "Male Targeted"),
    "male": AdAsset("male", "/ads/man.gif", "Male Targeted"),
    "multiple": AdAsset("multiple", "/ads/multiple.mp4", "Group of Males"),
    "woman": AdAsset("woman", "/ads/woman.gif", "Female Targeted"),
    "female": AdAsset("female", "/ads/female.mp4", "Female Targeted"),
    "fashion": AdAsset("fashion", "/ads/fashion.mp4", "Group of Females"),
    NEUTRAL_AD: AdAsset(NEUTRAL_AD, "/ads/neutral.gif", "Neutral Content"),
}


def resolve_ad(token: str | None) -> AdAsset:
    """Return the asset for ``token``; unknown tokens fall back to the neutral creative."""
    if token is None:
        return AD_CATALOG[NEUTRAL_AD]
    return AD_CATALOG.get(token.strip().lower(), AD_CATALOG[NEUTRAL_AD])


def ad_asset_path(token: str | None) -> str:
    return resolve_ad(token).path


def ad_display_name(token: str | None) -> str:
    return resolve_ad(token).display_name
