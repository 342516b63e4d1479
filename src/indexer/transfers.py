import math
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from common.exception import InvalidAmountError, InvalidSnapshotError
from common.types import (
    IndexedTransaction,
    TokenBalance,
    TransactionType,
    TransferRecord,
)
from loguru import logger

_RAW_AMOUNT_RE = re.compile(r"-?[0-9]+")
_UI_AMOUNT_RE = re.compile(r"-?[0-9]+(\.[0-9]+)?")


@dataclass
class AccountChange:
    """单个代币账户在一笔交易中的余额变化

    raw 数量均为整数，ui 数量仅用于展示
    """

    account_index: int
    mint: str
    owner: str | None
    decimals: int
    pre_amount: int = 0
    pre_ui_amount: str = "0"
    post_amount: int = 0
    post_ui_amount: str = "0"
    change_amount: int = 0
    change_ui_amount: str = "0"
    type: TransactionType | None = None


def parse_amount(amount: str | int) -> int:
    # "34141019152748" -> 34141019152748
    # 不允许按浮点数解析，raw 数量可能超出 double 的安全整数范围
    if isinstance(amount, bool):
        raise InvalidAmountError(f"无法解析的代币数量: {amount!r}")
    if isinstance(amount, int):
        return amount
    if not isinstance(amount, str) or not _RAW_AMOUNT_RE.fullmatch(amount):
        raise InvalidAmountError(f"无法解析的代币数量: {amount!r}")
    return int(amount)


def parse_ui_amount(ui_amount: str) -> float:
    # 只接受十进制小数，"nan"、"inf"、"1_0" 等 float() 能解析的写法都视为错误
    if not isinstance(ui_amount, str) or not _UI_AMOUNT_RE.fullmatch(ui_amount):
        raise InvalidAmountError(f"无法解析的代币 UI 数量: {ui_amount!r}")
    value = float(ui_amount)
    if not math.isfinite(value):
        raise InvalidAmountError(f"代币 UI 数量超出范围: {ui_amount!r}")
    return value


def to_ui_amount(amount: str, decimal: int) -> str:
    # "34141019152748", 6
    # -> "34141019.152748"
    negative = amount.startswith("-")
    digits = amount.lstrip("-")
    if decimal:
        digits = digits.rjust(decimal + 1, "0")
        digits = f"{digits[:-decimal]}.{digits[-decimal:]}".rstrip("0").rstrip(".")
    return f"-{digits}" if negative and digits != "0" else digits


def format_ui_amount(value: float) -> str:
    # 不使用科学计数法: 1e-06 -> "0.000001"
    if not math.isfinite(value):
        raise InvalidAmountError(f"代币 UI 数量超出范围: {value!r}")
    if value.is_integer():
        return str(int(value))
    return format(Decimal(repr(value)), "f")


def negate_ui_amount(ui_amount: str) -> str:
    if parse_ui_amount(ui_amount) == 0:
        return "0"
    if ui_amount.startswith("-"):
        return ui_amount[1:]
    return f"-{ui_amount}"


def _read_balance(balance: TokenBalance) -> tuple[int, str, str | None, int, int, str]:
    """读取余额记录中的 (accountIndex, mint, owner, decimals, amount, uiAmountString)"""
    try:
        account_index = balance["accountIndex"]
        mint = balance["mint"]
        token_amount = balance["uiTokenAmount"]
        raw_amount = token_amount["amount"]
        decimals = token_amount["decimals"]
    except (KeyError, TypeError) as e:
        raise InvalidSnapshotError(f"代币余额记录缺少字段 {e}: {balance!r}") from e

    if not isinstance(account_index, int) or isinstance(account_index, bool):
        raise InvalidSnapshotError(f"accountIndex 必须为整数: {account_index!r}")
    if not isinstance(decimals, int) or isinstance(decimals, bool) or decimals < 0:
        raise InvalidSnapshotError(f"decimals 必须为非负整数: {decimals!r}")

    amount = parse_amount(raw_amount)
    ui_amount = token_amount.get("uiAmountString")
    if ui_amount is None:
        ui_amount = to_ui_amount(str(amount), decimals)
    else:
        parse_ui_amount(ui_amount)
    return account_index, mint, balance.get("owner"), decimals, amount, ui_amount


def compute_account_changes(
    pre_balances: Iterable[TokenBalance],
    post_balances: Iterable[TokenBalance],
) -> dict[int, AccountChange]:
    """合并交易前后的代币余额，按 accountIndex 计算余额变化

    只出现在一侧的账户，另一侧视为 0。
    交易后余额为 0 的账户，变化量强制为 -pre_amount。
    """
    changes: dict[int, AccountChange] = {}

    for balance in pre_balances:
        account_index, mint, owner, decimals, amount, ui_amount = _read_balance(balance)
        changes[account_index] = AccountChange(
            account_index=account_index,
            mint=mint,
            owner=owner,
            decimals=decimals,
            pre_amount=amount,
            pre_ui_amount=ui_amount,
        )

    for balance in post_balances:
        account_index, mint, owner, decimals, amount, ui_amount = _read_balance(balance)
        change = changes.get(account_index)
        if change is not None:
            change.post_amount = amount
            change.post_ui_amount = ui_amount
            change.change_amount = amount - change.pre_amount
            change.change_ui_amount = format_ui_amount(
                parse_ui_amount(ui_amount) - parse_ui_amount(change.pre_ui_amount)
            )
        else:
            # 交易前不存在的代币账户
            changes[account_index] = AccountChange(
                account_index=account_index,
                mint=mint,
                owner=owner,
                decimals=decimals,
                post_amount=amount,
                post_ui_amount=ui_amount,
                change_amount=amount,
                change_ui_amount=ui_amount,
            )

    # 账户被清空或关闭
    for change in changes.values():
        if change.post_amount == 0:
            change.change_amount = -change.pre_amount
            change.change_ui_amount = negate_ui_amount(change.pre_ui_amount)

    return dict(sorted(changes.items()))


def determine_transaction_type(
    pre_amount: int | str, post_amount: int | str
) -> TransactionType:
    pre = parse_amount(pre_amount)
    post = parse_amount(post_amount)
    if pre > post:
        return "remove" if post == 0 else "sell"
    if post > pre:
        return "add" if pre == 0 else "buy"
    return "transfer"


def classify_account_changes(changes: dict[int, AccountChange]) -> None:
    for change in changes.values():
        change.type = determine_transaction_type(change.pre_amount, change.post_amount)


def compute_mint_net_changes(changes: dict[int, AccountChange]) -> dict[str, int]:
    """统计本笔交易中每个 mint 的净变化量"""
    net_changes: dict[str, int] = {}
    for change in changes.values():
        net_changes[change.mint] = net_changes.get(change.mint, 0) + change.change_amount
    return net_changes


def detect_burns(changes: dict[int, AccountChange]) -> None:
    """将 remove/sell 中的销毁识别为 burn

    某个 mint 的净减少量完全由该账户承担（没有其他账户收到这部分代币）时视为销毁。
    只统计当前交易内的账户。
    """
    net_changes = compute_mint_net_changes(changes)
    for change in changes.values():
        if change.type not in ("remove", "sell"):
            continue
        net_change = net_changes[change.mint]
        if net_change < 0 and change.change_amount == net_change:
            change.type = "burn"


def assemble_records(
    changes: dict[int, AccountChange], transaction: dict[str, Any]
) -> list[TransferRecord]:
    maker_address = transaction.get("makerAddress") or transaction.get("marker")
    records: list[TransferRecord] = []
    for account_index, change in changes.items():
        records.append(
            {
                "signature": transaction.get("signature"),
                "block": transaction.get("slot"),
                "blockTime": transaction.get("blockTime"),
                "accountIndex": account_index,
                "mint": change.mint,
                "owner": change.owner,
                "makerAddress": maker_address,
                "decimals": change.decimals,
                "preAmount": str(change.pre_amount),
                "preUiAmount": change.pre_ui_amount,
                "postAmount": str(change.post_amount),
                "postUiAmount": change.post_ui_amount,
                "changeAmount": str(change.change_amount),
                "changeUiAmount": change.change_ui_amount,
                "type": change.type,
                "status": transaction.get("status"),
            }
        )
    return records


def rank_records(records: Iterable[TransferRecord]) -> list[TransferRecord]:
    """按变化量绝对值降序排列，并去掉没有变化的账户

    sorted 是稳定排序，变化量相同的记录保持原有顺序
    """
    ranked = sorted(
        records,
        key=lambda record: abs(parse_ui_amount(record["changeUiAmount"])),
        reverse=True,
    )
    return [record for record in ranked if parse_amount(record["changeAmount"]) != 0]


def parse_token_transfers(
    transaction: IndexedTransaction | dict[str, Any],
) -> list[TransferRecord]:
    """解析一笔交易中的代币转账

    Args:
        transaction: 交易数据，代币余额位于 tokenTransfers 中

    Raises:
        InvalidAmountError: 代币数量无法解析时抛出
        InvalidSnapshotError: 代币余额记录格式错误时抛出

    Returns:
        list[TransferRecord]: 按变化量降序排列的转账记录
    """
    token_transfers = transaction.get("tokenTransfers") or {}
    pre_balances = token_transfers.get("preTokenBalances") or []
    post_balances = token_transfers.get("postTokenBalances") or []

    changes = compute_account_changes(pre_balances, post_balances)
    classify_account_changes(changes)
    detect_burns(changes)
    records = rank_records(assemble_records(changes, transaction))
    logger.debug(
        f"解析代币转账: {transaction.get('signature')} | "
        f"账户数: {len(changes)} | 记录数: {len(records)}"
    )
    return records
