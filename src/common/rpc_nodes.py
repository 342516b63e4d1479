import random

from common.config import IndexerConfig


def choice_rpc_node(config: IndexerConfig) -> str:
    rpc_nodes = config.rpc_nodes
    if not rpc_nodes:
        raise ValueError("No RPC nodes found")
    return random.choice(rpc_nodes)


def rpc_endpoint(node: str) -> str:
    # "api.mainnet-beta.solana.com" -> "https://api.mainnet-beta.solana.com"
    if node.startswith(("http://", "https://")):
        return node
    return f"https://{node}"
