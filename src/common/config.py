import os
from dataclasses import dataclass, field
from pathlib import Path

import toml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config.toml"
DEFAULT_RPC_NODE = "api.mainnet-beta.solana.com"
STORAGE_BACKENDS = ("file", "redis")


@dataclass
class IndexerConfig:
    rpc_nodes: list[str] = field(default_factory=lambda: [DEFAULT_RPC_NODE])
    max_retries: int = 5
    retry_delay: float = 1.0
    storage: str = "file"
    raw_dir: str = "transaction_raw"
    processed_dir: str = "transaction_processed"
    error_file: str = "transaction_errors.jsonl"
    log_level: str = "INFO"
    redis_host: str = "localhost"
    redis_port: int = 6379

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}"

    @classmethod
    def from_dict(cls, config: dict) -> "IndexerConfig":
        general_config = config.get("general", {})
        indexer_config = config.get("indexer", {})

        storage = indexer_config.get("storage", "file")
        if storage not in STORAGE_BACKENDS:
            raise ValueError(f"未知的存储后端: {storage}")

        max_retries = int(indexer_config.get("max_retries", 5))
        if max_retries < 0:
            raise ValueError("max_retries 不能小于 0")

        return cls(
            rpc_nodes=list(general_config.get("rpc_nodes", [DEFAULT_RPC_NODE])),
            max_retries=max_retries,
            retry_delay=float(indexer_config.get("retry_delay", 1.0)),
            storage=storage,
            raw_dir=indexer_config.get("raw_dir", "transaction_raw"),
            processed_dir=indexer_config.get("processed_dir", "transaction_processed"),
            error_file=indexer_config.get("error_file", "transaction_errors.jsonl"),
            log_level=indexer_config.get("log_level", "INFO"),
            redis_host=os.environ.get("REDIS_HOST", "localhost"),
            redis_port=int(os.environ.get("REDIS_PORT", 6379)),
        )


def load_config(path: str | os.PathLike = DEFAULT_CONFIG_PATH) -> IndexerConfig:
    """读取 toml 配置文件.

    Args:
        path: 配置文件路径

    Raises:
        FileNotFoundError: 配置文件不存在时抛出

    Returns:
        IndexerConfig: 配置
    """
    load_dotenv()
    if not Path(path).exists():
        raise FileNotFoundError(f"{path} not found")
    return IndexerConfig.from_dict(toml.load(path))
