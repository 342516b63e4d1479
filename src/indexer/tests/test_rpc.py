import json
from unittest.mock import MagicMock

import pytest
from common.exception import APIError
from solana.exceptions import SolanaRpcException

from indexer.rpc import (
    block_signatures,
    build_indexed_transaction,
    describe_rpc_error,
    fetch_block,
    fetch_transaction,
    get_signer_address,
)

SIG_1 = "4WZR6kQU8iDbxwFpDntbfN13f2eHpVrxKVUkvLxq33m7KNuxWN36tjEQdJS4ooEhsuBW73XHFoVwDNm7oqCQ8SAC"
SIG_2 = "5uWAsNnrLaUudAqYDDm4qLBsLCgPy9pBYEStntdfaqSTVfnDirQFE3QzQXhUr63gaypK66BX694pwkub6Zfv68HM"
SIG_3 = "2PToeWwAeyeFZk3KKdqmSRwtuTGkZfQq8jLDtt6WhndtL6BdFgZtAxsVeab3RofkhrNxpyY1kL6abx8vVBbNeCCe"
SIGNER = "GxaeXcakf96MGvenQZssRNjHaNDGLSu2REq2xpKoTYr"
POOL = "BoaaUDC1i3GnAN26M8d2sBKfk28LAn56LLAyctVoCrh2"
MINT = "98CdcBjcf83PUvRr5vPpvhy596TDdT74ksjccueMpump"


def rpc_response(result):
    response = MagicMock()
    response.to_json.return_value = json.dumps(
        {"jsonrpc": "2.0", "result": result, "id": 0}
    )
    return response


def rpc_exception(message):
    cause = Exception(message)
    e = SolanaRpcException(cause, MagicMock())
    e.__cause__ = cause
    return e


def parsed_transaction(err=None):
    return {
        "slot": 301234567,
        "blockTime": 1730000000,
        "meta": {
            "err": err,
            "fee": 5000,
            "preBalances": [2000000000, 1000],
            "postBalances": [1999995000, 1000],
            "preTokenBalances": [
                {
                    "accountIndex": 1,
                    "mint": MINT,
                    "owner": SIGNER,
                    "uiTokenAmount": {
                        "amount": "1395184740304",
                        "decimals": 6,
                        "uiAmount": 1395184.740304,
                        "uiAmountString": "1395184.740304",
                    },
                }
            ],
            "postTokenBalances": [
                {
                    "accountIndex": 1,
                    "mint": MINT,
                    "owner": SIGNER,
                    "uiTokenAmount": {
                        "amount": "740304",
                        "decimals": 6,
                        "uiAmount": 0.740304,
                        "uiAmountString": "0.740304",
                    },
                }
            ],
        },
        "transaction": {
            "signatures": [SIG_1],
            "message": {
                "accountKeys": [
                    {"pubkey": SIGNER, "signer": True, "writable": True},
                    {"pubkey": POOL, "signer": False, "writable": True},
                ],
                "instructions": [
                    {
                        "programId": "ComputeBudget111111111111111111111111111111",
                        "accounts": [],
                        "data": "3DdGGhkhJbjm",
                    },
                    {
                        "program": "spl-token",
                        "programId": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
                        "parsed": {"type": "burn"},
                    },
                ],
                "recentBlockhash": "EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N",
            },
        },
    }


class TestFetchBlock:

    def test_fetch_block(self):
        client = MagicMock()
        client.get_block.return_value = rpc_response(
            {
                "blockhash": "EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N",
                "transactions": [
                    {"transaction": {"signatures": [SIG_1]}},
                    {"transaction": {"signatures": [SIG_2, SIG_3]}},
                ],
            }
        )
        block = fetch_block(client, 301234567)
        client.get_block.assert_called_once_with(
            301234567, encoding="json", max_supported_transaction_version=0
        )
        assert block_signatures(block) == [SIG_1, SIG_2, SIG_3]

    def test_block_not_found(self):
        client = MagicMock()
        client.get_block.return_value.to_json.return_value = json.dumps(
            {
                "jsonrpc": "2.0",
                "error": {"code": -32009, "message": "Slot 1 was skipped"},
                "id": 0,
            }
        )
        assert fetch_block(client, 1) is None

    def test_rpc_error_raises_api_error(self):
        client = MagicMock()
        client.get_block.side_effect = rpc_exception(
            "Client error '429 Too Many Requests'"
        )
        with pytest.raises(APIError, match="429") as exc_info:
            fetch_block(client, 1)
        assert isinstance(exc_info.value.__cause__, SolanaRpcException)

    def test_empty_block(self):
        assert block_signatures({"transactions": []}) == []
        assert block_signatures({}) == []


class TestFetchTransaction:

    def test_found_on_first_attempt(self):
        client = MagicMock()
        client.get_transaction.return_value = rpc_response(parsed_transaction())
        sleeps = []
        transaction = fetch_transaction(client, SIG_1, sleep=sleeps.append)
        assert transaction["slot"] == 301234567
        assert client.get_transaction.call_count == 1
        assert sleeps == []

        args, kwargs = client.get_transaction.call_args
        assert str(args[0]) == SIG_1
        assert kwargs == {"encoding": "jsonParsed", "max_supported_transaction_version": 0}

    def test_found_after_retries(self):
        client = MagicMock()
        client.get_transaction.side_effect = [
            rpc_response(None),
            rpc_response(None),
            rpc_response(parsed_transaction()),
        ]
        sleeps = []
        transaction = fetch_transaction(
            client, SIG_1, retry_delay=1.0, sleep=sleeps.append
        )
        assert transaction is not None
        assert client.get_transaction.call_count == 3
        assert sleeps == [1.0]

    def test_give_up_after_max_retries(self):
        client = MagicMock()
        client.get_transaction.return_value = rpc_response(None)
        sleeps = []
        transaction = fetch_transaction(
            client, SIG_1, max_retries=5, retry_delay=0.5, sleep=sleeps.append
        )
        assert transaction is None
        assert client.get_transaction.call_count == 6
        assert sleeps == [0.5] * 5

    def test_rpc_exception_counts_as_miss(self):
        client = MagicMock()
        client.get_transaction.side_effect = [
            rpc_exception("Client error '429 Too Many Requests'"),
            rpc_response(parsed_transaction()),
        ]
        transaction = fetch_transaction(client, SIG_1, sleep=lambda _: None)
        assert transaction is not None
        assert client.get_transaction.call_count == 2

    def test_describe_rpc_error(self):
        e = rpc_exception("Client error '429 Too Many Requests'")
        assert "429" in describe_rpc_error(e)


class TestBuildIndexedTransaction:

    def test_extract_key_information(self):
        data = build_indexed_transaction(SIG_1, parsed_transaction())
        assert data["signature"] == SIG_1
        assert data["slot"] == 301234567
        assert data["blockTime"] == 1730000000
        assert data["fee"] == 5000
        assert data["status"] == "success"
        assert data["marker"] == SIGNER
        assert data["signatures"] == [SIG_1]
        assert data["recentBlockhash"] == "EkSnNWid2cvwEVnVx9aBqawnmiCNiDgp3gUdkDPTKN1N"
        assert data["instructions"][0] == {
            "programId": "ComputeBudget111111111111111111111111111111",
            "accounts": [],
            "data": "3DdGGhkhJbjm",
            "programName": None,
        }
        assert data["instructions"][1]["programName"] == "spl-token"
        assert data["tokenTransfers"]["preTokenBalances"][0]["accountIndex"] == 1
        assert data["balanceChanges"] == [
            {
                "account": SIGNER,
                "preSol": 2000000000,
                "postSol": 1999995000,
                "change": -5000,
            },
            {"account": POOL, "preSol": 1000, "postSol": 1000, "change": 0},
        ]

    def test_failed_transaction(self):
        err = {"InstructionError": [2, {"Custom": 6001}]}
        data = build_indexed_transaction(SIG_1, parsed_transaction(err=err))
        assert data["status"] == "failed"

    def test_without_token_balances(self):
        transaction = parsed_transaction()
        del transaction["meta"]["preTokenBalances"]
        del transaction["meta"]["postTokenBalances"]
        del transaction["meta"]["postBalances"]
        data = build_indexed_transaction(SIG_1, transaction)
        assert "tokenTransfers" not in data
        assert "balanceChanges" not in data

    def test_no_signer(self):
        transaction = parsed_transaction()
        for key in transaction["transaction"]["message"]["accountKeys"]:
            key["signer"] = False
        assert get_signer_address(transaction) is None
