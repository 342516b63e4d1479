from typing import Literal, NotRequired, TypedDict

TransactionType = Literal["add", "remove", "buy", "sell", "transfer", "burn"]


class UiTokenAmount(TypedDict):
    amount: str
    decimals: int
    uiAmount: float | None
    uiAmountString: NotRequired[str]


class TokenBalance(TypedDict):
    accountIndex: int
    mint: str
    owner: str
    uiTokenAmount: UiTokenAmount


class TokenTransfers(TypedDict):
    preTokenBalances: list[TokenBalance]
    postTokenBalances: list[TokenBalance]


class SolBalanceChange(TypedDict):
    account: str
    preSol: int
    postSol: int
    change: int


class Instruction(TypedDict):
    programId: str | None
    accounts: list[str] | None
    data: str | None
    programName: str | None


class IndexedTransaction(TypedDict):
    signature: str
    slot: int | None
    blockTime: int | None
    fee: int
    status: str
    instructions: list[Instruction]
    signatures: list[str]
    recentBlockhash: str | None
    marker: str | None
    tokenTransfers: NotRequired[TokenTransfers]
    balanceChanges: NotRequired[list[SolBalanceChange]]


class TransferRecord(TypedDict):
    signature: str | None
    block: int | None
    blockTime: int | None
    accountIndex: int
    mint: str
    owner: str | None
    makerAddress: str | None
    decimals: int
    preAmount: str
    preUiAmount: str
    postAmount: str
    postUiAmount: str
    changeAmount: str
    changeUiAmount: str
    type: TransactionType
    status: str | None
