"""
Release feed models.

Only the fields the deployer acts on are modelled; everything else in the
GitHub release payload is ignored.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Asset(BaseModel):
    """A downloadable file attached to a release."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., description="Asset file name (e.g., app-linux-amd64.tar.gz)")
    browser_download_url: str = Field(..., description="URL the asset is fetched from")
    size: Optional[int] = Field(None, description="Asset size in bytes if reported")


class Release(BaseModel):
    """Newest release descriptor returned by the feed."""

    model_config = ConfigDict(extra="ignore")

    tag_name: str = Field(..., description="Release version tag (e.g., v1.2.0)")
    name: Optional[str] = Field(None, description="Human-readable release title")
    assets: List[Asset] = Field(default_factory=list, description="Attached release assets")

    def find_asset_with_suffix(self, suffix: str) -> Optional[Asset]:
        """Return the first asset whose name ends with suffix, or None."""
        for asset in self.assets:
            if asset.name.endswith(suffix):
                return asset
        return None
