import argparse
import sys
import time
from dataclasses import dataclass
from typing import Callable

from common.config import DEFAULT_CONFIG_PATH, IndexerConfig, load_config
from common.exception import APIError, IndexerError
from common.rpc_nodes import choice_rpc_node, rpc_endpoint
from common.storage import (
    ErrorJournal,
    FileErrorJournal,
    FileTransactionStore,
    RedisErrorJournal,
    RedisTransactionStore,
    TransactionStore,
    create_redis_client,
)
from loguru import logger
from redis.exceptions import RedisError
from rich.console import Console
from rich.table import Table
from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed

from indexer.rpc import (
    block_signatures,
    build_indexed_transaction,
    fetch_block,
    fetch_transaction,
)
from indexer.transfers import parse_token_transfers

console = Console()


@dataclass
class BlockIndexResult:
    slot: int
    found: bool = False
    transactions_total: int = 0
    transactions_indexed: int = 0
    transactions_skipped: int = 0
    transactions_failed: int = 0
    records_saved: int = 0


def create_client(config: IndexerConfig) -> Client:
    rpc_api = choice_rpc_node(config)
    logger.info(f"Using RPC node: {rpc_api}")
    return Client(rpc_endpoint(rpc_api), commitment=Confirmed)


def create_storage(config: IndexerConfig) -> tuple[TransactionStore, ErrorJournal]:
    if config.storage == "redis":
        redis_client = create_redis_client(config)
        return RedisTransactionStore(redis_client), RedisErrorJournal(redis_client)
    return (
        FileTransactionStore(config.raw_dir, config.processed_dir),
        FileErrorJournal(config.error_file),
    )


def record_error(
    error_journal: ErrorJournal | None, signature: str, error: str
) -> None:
    if error_journal is None:
        return
    try:
        error_journal.add_error(signature, error)
    except (OSError, RedisError) as e:
        logger.error(f"记录错误信息失败: {signature} | Error: {e}")


def index_transaction(
    signature: str,
    result: BlockIndexResult,
    client: Client,
    config: IndexerConfig,
    store: TransactionStore,
    error_journal: ErrorJournal | None,
    sleep: Callable[[float], None],
) -> None:
    transaction = fetch_transaction(
        client,
        signature,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        sleep=sleep,
    )
    if transaction is None:
        result.transactions_skipped += 1
        record_error(error_journal, signature, "transaction not found")
        return

    try:
        store.save_raw(signature, transaction)
    except (OSError, RedisError) as e:
        logger.error(f"保存原始交易失败: {signature} | Error: {e}")
        result.transactions_failed += 1
        record_error(error_journal, signature, str(e))
        return

    try:
        indexed_data = build_indexed_transaction(signature, transaction)
        records = parse_token_transfers(indexed_data)
    except (IndexerError, KeyError, TypeError, AttributeError) as e:
        logger.error(f"解析交易失败: {signature} | Error: {e!r}")
        result.transactions_failed += 1
        record_error(error_journal, signature, repr(e))
        return

    if records:
        try:
            store.save_processed(signature, records)
        except (OSError, RedisError) as e:
            logger.error(f"保存转账记录失败: {signature} | Error: {e}")
            result.transactions_failed += 1
            record_error(error_journal, signature, str(e))
            return
        result.records_saved += len(records)

    logger.info(f"Transaction successfully indexed: {signature}")
    result.transactions_indexed += 1


def index_block(
    slot: int,
    config: IndexerConfig,
    store: TransactionStore,
    client: Client | None = None,
    error_journal: ErrorJournal | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BlockIndexResult:
    """索引区块内的所有交易

    单笔交易获取、解析或保存失败时跳过该交易，不影响区块内的其他交易
    """
    logger.info(f"Looking up Solana block at slot: {slot}")
    if client is None:
        client = create_client(config)

    result = BlockIndexResult(slot=slot)
    try:
        block = fetch_block(client, slot)
    except APIError as e:
        if "429" in str(e):
            logger.error(
                f"Rate limit exceeded at slot {slot}. "
                "Try again later or use a different RPC endpoint."
            )
        else:
            logger.error(
                f"Network error at slot {slot}: {e}. "
                "Check your internet connection or try a different RPC endpoint."
            )
        return result

    if block is None:
        logger.warning(
            f"Block {slot} not found. It might be too old or on a different network."
        )
        return result

    result.found = True
    signatures = block_signatures(block)
    result.transactions_total = len(signatures)
    for signature in signatures:
        index_transaction(
            signature, result, client, config, store, error_journal, sleep
        )
    return result


def print_result(result: BlockIndexResult):
    table = Table(title=f"Block {result.slot}")
    table.add_column("item")
    table.add_column("count", justify="right")
    table.add_row("found", str(result.found))
    table.add_row("transactions", str(result.transactions_total))
    table.add_row("indexed", str(result.transactions_indexed))
    table.add_row("skipped", str(result.transactions_skipped))
    table.add_row("failed", str(result.transactions_failed))
    table.add_row("records saved", str(result.records_saved))
    console.print(table)


def main(argv: list[str] | None = None) -> int:
    arg_parser = argparse.ArgumentParser(
        description="Index token transfers of a Solana block"
    )
    arg_parser.add_argument("slot", type=int, nargs="?", help="slot of the block")
    arg_parser.add_argument(
        "--latest", action="store_true", help="index the current slot"
    )
    arg_parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    arg_parser.add_argument("--rpc", help="RPC endpoint, overrides rpc_nodes")
    args = arg_parser.parse_args(argv)

    if args.slot is None and not args.latest:
        arg_parser.error("slot is required unless --latest is given")

    config = load_config(args.config)
    if args.rpc:
        config.rpc_nodes = [args.rpc]

    logger.remove()
    logger.add(sys.stderr, level=config.log_level)

    client = create_client(config)
    slot = args.slot
    if args.latest:
        slot = client.get_slot().value

    store, error_journal = create_storage(config)
    result = index_block(
        slot,
        config,
        store,
        client=client,
        error_journal=error_journal,
    )
    print_result(result)
    return 0 if result.found else 1


if __name__ == "__main__":
    sys.exit(main())
