"""ROFL manifest parsing, fetching and registry sync"""

from .fetcher import ManifestFetcher, raw_manifest_url
from .manifest import Manifest, ManifestDeployment, ManifestParseError, parse_manifest
from .sync import sync_apps

__all__ = [
    "ManifestFetcher",
    "raw_manifest_url",
    "Manifest",
    "ManifestDeployment",
    "ManifestParseError",
    "parse_manifest",
    "sync_apps",
]
