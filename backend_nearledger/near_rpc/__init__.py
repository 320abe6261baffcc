"""
Archival node adapters: JSON-RPC client, snapshot source and neardata receipt source.
"""

from backend_nearledger.near_rpc.client import NearRpcClient
from backend_nearledger.near_rpc.receipts import NeardataReceiptSource, parse_neardata_block
from backend_nearledger.near_rpc.snapshots import RpcSnapshotSource

__all__ = [
    "NearRpcClient",
    "NeardataReceiptSource",
    "RpcSnapshotSource",
    "parse_neardata_block",
]
