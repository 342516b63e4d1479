import json
from pathlib import Path
from typing import Any, Protocol

import redis
from loguru import logger
from redis.client import Redis

from common.config import IndexerConfig
from common.types import TransferRecord


def create_redis_client(config: IndexerConfig) -> Redis:
    pool = redis.ConnectionPool.from_url(config.redis_url)
    return redis.Redis.from_pool(pool)


class TransactionStore(Protocol):
    """交易数据存储

    原始交易与解析后的转账记录都以交易签名为键保存
    """

    def save_raw(self, signature: str, transaction: dict[str, Any]) -> None: ...

    def save_processed(
        self, signature: str, records: list[TransferRecord]
    ) -> None: ...

    def load_raw(self, signature: str) -> dict[str, Any] | None: ...

    def load_processed(self, signature: str) -> list[TransferRecord] | None: ...


class ErrorJournal(Protocol):
    """记录索引区块时被跳过或解析失败的交易"""

    def add_error(self, transaction_signature: str, error: str) -> None: ...

    def get_errors(self, count: int = 1) -> list[dict[str, str]]: ...


class FileTransactionStore:

    def __init__(
        self,
        raw_dir: str | Path = "transaction_raw",
        processed_dir: str | Path = "transaction_processed",
    ) -> None:
        self.raw_dir = Path(raw_dir)
        self.processed_dir = Path(processed_dir)

    @staticmethod
    def _write(path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.info(f"数据已保存到 {path}")

    @staticmethod
    def _read(path: Path) -> Any:
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def save_raw(self, signature: str, transaction: dict[str, Any]) -> None:
        self._write(self.raw_dir / f"{signature}.json", transaction)

    def save_processed(self, signature: str, records: list[TransferRecord]) -> None:
        self._write(self.processed_dir / f"{signature}.json", records)

    def load_raw(self, signature: str) -> dict[str, Any] | None:
        return self._read(self.raw_dir / f"{signature}.json")

    def load_processed(self, signature: str) -> list[TransferRecord] | None:
        return self._read(self.processed_dir / f"{signature}.json")


class RedisTransactionStore:

    def __init__(self, redis_client: Redis, prefix: str = "solana") -> None:
        self.r = redis_client
        self.raw_key = f"{prefix}:transaction_raw"
        self.processed_key = f"{prefix}:transaction_processed"

    def _get(self, key: str) -> Any:
        value = self.r.get(key)
        if value is None:
            return None
        return json.loads(value)

    def save_raw(self, signature: str, transaction: dict[str, Any]) -> None:
        self.r.set(f"{self.raw_key}:{signature}", json.dumps(transaction))
        logger.info(f"原始交易已保存: {self.raw_key}:{signature}")

    def save_processed(self, signature: str, records: list[TransferRecord]) -> None:
        self.r.set(f"{self.processed_key}:{signature}", json.dumps(records))
        logger.info(f"转账记录已保存: {self.processed_key}:{signature}")

    def load_raw(self, signature: str) -> dict[str, Any] | None:
        return self._get(f"{self.raw_key}:{signature}")

    def load_processed(self, signature: str) -> list[TransferRecord] | None:
        return self._get(f"{self.processed_key}:{signature}")


class FileErrorJournal:
    """以 JSON Lines 格式追加写入错误信息"""

    def __init__(self, path: str | Path = "transaction_errors.jsonl") -> None:
        self.path = Path(path)

    def add_error(self, transaction_signature: str, error: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        entry = {"transaction_signature": transaction_signature, "error": error}
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry) + "\n")

    def get_errors(self, count: int = 1) -> list[dict[str, str]]:
        if not self.path.exists():
            return []
        with self.path.open(encoding="utf-8") as f:
            lines = [line for line in f if line.strip()]
        return [json.loads(line) for line in lines[:count]]


class RedisErrorJournal:
    """错误信息写入 redis stream"""

    def __init__(self, redis_client: Redis, prefix: str = "solana") -> None:
        self.r = redis_client
        self.stream_key = f"{prefix}:indexer_error"

    def add_error(self, transaction_signature: str, error: str) -> None:
        self.r.xadd(
            self.stream_key,
            {"transaction_signature": transaction_signature, "error": error},
            maxlen=1000,
        )

    def get_errors(self, count: int = 1) -> list[dict[str, str]]:
        errors = []
        for _id, payload in self.r.xrange(self.stream_key, count=count):
            errors.append(
                {
                    key.decode("utf-8") if isinstance(key, bytes) else key: (
                        value.decode("utf-8") if isinstance(value, bytes) else value
                    )
                    for key, value in payload.items()
                }
            )
        return errors
