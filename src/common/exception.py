class IndexerError(Exception):
    """索引器异常基类"""


class APIError(IndexerError):
    """请求 RPC 节点失败"""


class InvalidAmountError(IndexerError, ValueError):
    """无法解析的代币数量"""


class InvalidSnapshotError(IndexerError, ValueError):
    """格式错误的代币余额记录"""
