"""
Optional transaction indexers used as block hints for gap filling.
"""

from backend_nearledger.indexers.base import HttpIndexer
from backend_nearledger.indexers.intents_explorer import IntentsExplorerIndexer
from backend_nearledger.indexers.nearblocks import NearBlocksIndexer
from backend_nearledger.indexers.pikespeak import PikespeakIndexer

__all__ = ["HttpIndexer", "IntentsExplorerIndexer", "NearBlocksIndexer", "PikespeakIndexer"]
