import json
import time
from typing import Any, Callable

from common.exception import APIError
from common.types import IndexedTransaction
from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.api import Client
from solders.signature import Signature


def describe_rpc_error(e: SolanaRpcException) -> str:
    # SolanaRpcException 本身不带消息，原始的 httpx 异常在 __cause__ 中
    cause = e.__cause__ or e
    return str(cause) or getattr(e, "error_msg", repr(e))


def fetch_block(client: Client, slot: int) -> dict[str, Any] | None:
    """获取区块详情.

    Raises:
        APIError: 请求 RPC 节点失败时抛出

    Returns:
        dict | None: 区块不存在时返回 None
    """
    try:
        response = client.get_block(
            slot,
            encoding="json",
            max_supported_transaction_version=0,
        )
    except SolanaRpcException as e:
        raise APIError(f"请求区块失败: {slot} | {describe_rpc_error(e)}") from e
    js_data = response.to_json()
    return json.loads(js_data).get("result")


def block_signatures(block: dict[str, Any]) -> list[str]:
    signatures = []
    for transaction in block.get("transactions") or []:
        signatures.extend(transaction["transaction"]["signatures"])
    return signatures


def get_transaction_details(client: Client, signature: str) -> dict[str, Any] | None:
    response = client.get_transaction(
        Signature.from_string(signature),
        encoding="jsonParsed",
        max_supported_transaction_version=0,
    )
    js_data = response.to_json()
    return json.loads(js_data).get("result")


def fetch_transaction(
    client: Client,
    signature: str,
    max_retries: int = 5,
    retry_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any] | None:
    """获取交易详情

    RPC 节点并不能在第一时间返回交易详情，所以首次请求失败后最多重试 max_retries 次

    Returns:
        dict | None: 重试结束后仍未获取到交易时返回 None
    """

    def attempt() -> dict[str, Any] | None:
        try:
            return get_transaction_details(client, signature)
        except SolanaRpcException as e:
            logger.warning(
                f"请求交易详情失败: {signature} | {describe_rpc_error(e)}"
            )
            return None

    transaction = attempt()
    retry_count = 0
    while transaction is None and retry_count < max_retries:
        retry_count += 1
        logger.warning(f"Retry attempt {retry_count} for transaction {signature}")
        transaction = attempt()
        if transaction is None:
            sleep(retry_delay)

    if transaction is None:
        logger.error(
            f"Transaction not found after {retry_count} retries: {signature}, "
            "it might be too old or on a different network"
        )
    return transaction


def get_signer_address(transaction: dict[str, Any]) -> str | None:
    """获取交易的签名地址"""
    keys = transaction["transaction"]["message"]["accountKeys"]
    for key in keys:
        if key.get("signer") is True:
            return key["pubkey"]
    return None


def build_indexed_transaction(
    signature: str, transaction: dict[str, Any]
) -> IndexedTransaction:
    """从 jsonParsed 格式的交易中提取关键信息"""
    meta = transaction.get("meta") or {}
    message = transaction["transaction"]["message"]

    data: IndexedTransaction = {
        "signature": signature,
        "slot": transaction.get("slot"),
        "blockTime": transaction.get("blockTime"),
        "fee": meta.get("fee") or 0,
        "status": "failed" if meta.get("err") else "success",
        "instructions": [
            {
                "programId": ix.get("programId"),
                "accounts": ix.get("accounts"),
                "data": ix.get("data"),
                "programName": ix.get("program"),
            }
            for ix in message.get("instructions", [])
        ],
        "signatures": list(transaction["transaction"].get("signatures", [])),
        "recentBlockhash": message.get("recentBlockhash"),
        "marker": get_signer_address(transaction),
    }

    if meta.get("postTokenBalances") is not None:
        data["tokenTransfers"] = {
            "preTokenBalances": meta.get("preTokenBalances") or [],
            "postTokenBalances": meta["postTokenBalances"],
        }

    if meta.get("postBalances") is not None:
        pre_balances = meta.get("preBalances") or []
        post_balances = meta["postBalances"]
        balance_changes = []
        for index, account in enumerate(message["accountKeys"]):
            pre_sol = pre_balances[index] if index < len(pre_balances) else 0
            post_sol = post_balances[index] if index < len(post_balances) else 0
            balance_changes.append(
                {
                    "account": account["pubkey"],
                    "preSol": pre_sol,
                    "postSol": post_sol,
                    "change": post_sol - pre_sol,
                }
            )
        data["balanceChanges"] = balance_changes

    return data
