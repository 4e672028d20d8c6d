"""
Test Suite for the Pump I/O adapters

Run with: pytest pump_io/tests/ -v
"""

import sys
import json
import logging
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from pump_io.chain import ChainClient, ChainError
from pump_io.portal import (
    MetadataUploader,
    OperationIntent,
    OperationKind,
    QuoteError,
    TokenMetadata,
    TradeQuoteClient,
    UploadError,
)
from pump_io.relay import BundleRelay, RelayError
from utils import configure_logging

MINT = str(Keypair().pubkey())


# =============================================================================
# FIXTURES
# =============================================================================

def response(status_code=200, content=b"", json_body=None, text=""):
    resp = Mock()
    resp.status_code = status_code
    resp.content = content
    resp.text = text
    resp.reason = "Reason"
    if json_body is None:
        resp.json.side_effect = ValueError("No JSON")
    else:
        resp.json.return_value = json_body
    return resp


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def buy_intent():
    return OperationIntent(OperationKind.BUY, amount=0.1, slippage=10, priority_fee=0.00001, mint=MINT)


# =============================================================================
# OPERATION INTENT
# =============================================================================

class TestOperationIntent:

    def test_valid(self, buy_intent):
        assert buy_intent.validate() is buy_intent

    @pytest.mark.parametrize("changes", [
        {"amount": 0},
        {"amount": -1},
        {"slippage": 0.5},
        {"slippage": 101},
        {"priority_fee": -0.1},
        {"mint": None},
    ])
    def test_invalid(self, changes):
        fields = dict(kind=OperationKind.SELL, amount=5, slippage=10, priority_fee=0.0, mint=MINT)
        fields.update(changes)
        with pytest.raises(ValueError):
            OperationIntent(**fields).validate()

    def test_transfer_needs_no_mint(self):
        OperationIntent(OperationKind.TRANSFER, amount=1, slippage=1, priority_fee=0).validate()

    def test_create_needs_metadata(self):
        with pytest.raises(ValueError):
            OperationIntent(OperationKind.CREATE, amount=1, slippage=10, priority_fee=0.0001, mint=MINT).validate()

    def test_payload(self, buy_intent):
        payload = buy_intent.to_payload("PUBKEY")
        assert payload == {
            "publicKey": "PUBKEY",
            "action": "buy",
            "mint": MINT,
            "denominatedInSol": "true",
            "amount": 0.1,
            "slippage": 10,
            "priorityFee": 0.00001,
            "pool": "pump",
        }

    def test_payload_with_metadata(self):
        intent = OperationIntent(
            OperationKind.CREATE, amount=100, slippage=10, priority_fee=0.0001, mint=MINT,
            denominated_in_sol=False, token_metadata={"name": "N", "symbol": "S", "uri": "U"}
        )
        payload = intent.to_payload("PUBKEY")
        assert payload["denominatedInSol"] == "false"
        assert payload["tokenMetadata"] == {"name": "N", "symbol": "S", "uri": "U"}

    def test_with_amount_copies(self, buy_intent):
        sell = buy_intent.with_amount(42, denominated_in_sol=False)
        assert sell.amount == 42 and sell.denominated_in_sol is False
        assert buy_intent.amount == 0.1 and buy_intent.denominated_in_sol is True

    def test_transfer_has_no_payload(self):
        with pytest.raises(ValueError):
            OperationIntent(OperationKind.TRANSFER, amount=1, slippage=1, priority_fee=0).to_payload("PK")


# =============================================================================
# TRADE QUOTE CLIENT
# =============================================================================

class TestTradeQuoteClient:

    def test_single_transaction(self, session, buy_intent):
        session.post.return_value = response(200, content=b"\x01\x02")
        client = TradeQuoteClient("https://trade.test", session=session)

        assert client.request_transaction("PK", buy_intent) == b"\x01\x02"
        kwargs = session.post.call_args.kwargs
        assert kwargs["json"]["publicKey"] == "PK"
        assert kwargs["json"]["action"] == "buy"

    def test_non_200_is_not_retried(self, session, buy_intent):
        session.post.return_value = response(400, text="bad mint")
        client = TradeQuoteClient("https://trade.test", session=session, retry_wait=0)

        with pytest.raises(QuoteError, match="400"):
            client.request_transaction("PK", buy_intent)
        assert session.post.call_count == 1

    def test_connection_error_retried(self, session, buy_intent):
        session.post.side_effect = [requests.ConnectionError("reset"), response(200, content=b"tx")]
        client = TradeQuoteClient("https://trade.test", session=session, max_retries=3, retry_wait=0)

        assert client.request_transaction("PK", buy_intent) == b"tx"
        assert session.post.call_count == 2

    def test_retries_exhausted(self, session, buy_intent):
        session.post.side_effect = requests.Timeout("slow")
        client = TradeQuoteClient("https://trade.test", session=session, max_retries=2, retry_wait=0)

        with pytest.raises(requests.Timeout):
            client.request_transaction("PK", buy_intent)
        assert session.post.call_count == 2

    def test_empty_body(self, session, buy_intent):
        session.post.return_value = response(200, content=b"")
        with pytest.raises(QuoteError):
            TradeQuoteClient("https://trade.test", session=session).request_transaction("PK", buy_intent)

    def test_invalid_intent_never_sent(self, session):
        bad = OperationIntent(OperationKind.BUY, amount=0, slippage=10, priority_fee=0, mint=MINT)
        with pytest.raises(ValueError):
            TradeQuoteClient("https://trade.test", session=session).request_transaction("PK", bad)
        session.post.assert_not_called()

    def test_bundle(self, session, buy_intent):
        session.post.return_value = response(200, json_body=["tx1", "tx2"])
        client = TradeQuoteClient("https://trade.test", session=session)

        encoded = client.request_bundle([("A", buy_intent), ("B", buy_intent)])

        assert encoded == ["tx1", "tx2"]
        body = session.post.call_args.kwargs["json"]
        assert [item["publicKey"] for item in body] == ["A", "B"]

    def test_bundle_wrong_count(self, session, buy_intent):
        session.post.return_value = response(200, json_body=["tx1"])
        with pytest.raises(QuoteError):
            TradeQuoteClient("https://trade.test", session=session).request_bundle(
                [("A", buy_intent), ("B", buy_intent)]
            )

    def test_bundle_not_json(self, session, buy_intent):
        session.post.return_value = response(200)
        with pytest.raises(QuoteError):
            TradeQuoteClient("https://trade.test", session=session).request_bundle([("A", buy_intent)])


# =============================================================================
# METADATA UPLOADER
# =============================================================================

class TestMetadataUploader:

    @pytest.fixture
    def image(self, tmp_path):
        path = tmp_path / "logo.png"
        path.write_bytes(b"\x89PNG\r\n")
        return str(path)

    def test_upload(self, session, image):
        session.post.return_value = response(200, json_body={"metadataUri": "https://ipfs.io/ipfs/abc"})
        metadata = TokenMetadata("Name", "SYM", "desc", twitter="https://x.com/a")

        uri = MetadataUploader("https://pump.test/api/ipfs", session=session).upload(metadata, image)

        assert uri == "https://ipfs.io/ipfs/abc"
        kwargs = session.post.call_args.kwargs
        assert kwargs["data"]["showName"] == "true"
        assert kwargs["data"]["twitter"] == "https://x.com/a"
        name, data, content_type = kwargs["files"]["file"]
        assert (name, data, content_type) == ("logo.png", b"\x89PNG\r\n", "image/png")

    def test_missing_uri(self, session, image):
        session.post.return_value = response(200, json_body={"ok": True})
        with pytest.raises(UploadError):
            MetadataUploader("https://pump.test", session=session).upload(TokenMetadata("N", "S", "D"), image)

    def test_server_error(self, session, image):
        session.post.return_value = response(500, text="down")
        with pytest.raises(UploadError, match="500"):
            MetadataUploader("https://pump.test", session=session).upload(TokenMetadata("N", "S", "D"), image)


# =============================================================================
# BUNDLE RELAY
# =============================================================================

class TestBundleRelay:

    def test_send_bundle(self, session):
        session.post.return_value = response(200, json_body={"jsonrpc": "2.0", "id": 1, "result": "bundle-id"})

        bundle_id = BundleRelay("https://relay.test", session=session).send_bundle(["a", "b"])

        assert bundle_id == "bundle-id"
        payload = session.post.call_args.kwargs["json"]
        assert payload == {"jsonrpc": "2.0", "id": 1, "method": "sendBundle", "params": [["a", "b"]]}

    def test_accepted_without_body(self, session):
        session.post.return_value = response(202)
        assert BundleRelay("https://relay.test", session=session).send_bundle(["a"]) is None

    def test_rpc_error(self, session):
        session.post.return_value = response(200, json_body={"error": {"code": -32602, "message": "bad"}})
        with pytest.raises(RelayError):
            BundleRelay("https://relay.test", session=session).send_bundle(["a"])

    def test_http_error(self, session):
        session.post.return_value = response(429, text="rate limited")
        with pytest.raises(RelayError, match="429"):
            BundleRelay("https://relay.test", session=session).send_bundle(["a"])

    def test_size_limits(self, session):
        relay = BundleRelay("https://relay.test", session=session)
        with pytest.raises(ValueError):
            relay.send_bundle([])
        with pytest.raises(ValueError):
            relay.send_bundle(["tx"] * 6)
        session.post.assert_not_called()


def test_adapter_records_reach_run_log(tmp_path, session):
    log_file = tmp_path / "run.log"
    configure_logging("INFO", str(log_file))
    try:
        session.post.side_effect = [
            response(json_body={"jsonrpc": "2.0", "result": "bundle-xyz"}),
            response(),
        ]
        relay = BundleRelay("https://relay.test", session=session)
        relay.send_bundle(["abc"])
        relay.send_bundle(["def"])
    finally:
        for handler in logging.getLogger("pump_swarm").handlers:
            handler.close()
        configure_logging()

    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert [(e["level"], e["msg"]) for e in entries] == [
        ("INFO", "Bundle accepted: bundle-xyz"),
        ("WARNING", "Relay accepted bundle without a JSON body"),
    ]


# =============================================================================
# CHAIN CLIENT
# =============================================================================

class TestChainClient:

    @pytest.fixture
    def rpc(self):
        return Mock()

    @pytest.fixture
    def chain(self, rpc):
        return ChainClient("https://rpc.test", client=rpc)

    def test_balance(self, chain, rpc):
        rpc.get_balance.return_value = Mock(value=1_500_000_000)
        owner = Keypair().pubkey()

        assert chain.get_balance_lamports(owner) == 1_500_000_000

    def test_token_balance(self, chain, rpc):
        account = Mock()
        account.account.data.parsed = {"info": {"tokenAmount": {"uiAmount": 1234.5, "decimals": 6}}}
        rpc.get_token_accounts_by_owner_json_parsed.return_value = Mock(value=[account])

        assert chain.get_token_balance(Keypair().pubkey(), Pubkey.from_string(MINT)) == 1234.5

    def test_token_balance_without_account(self, chain, rpc):
        rpc.get_token_accounts_by_owner_json_parsed.return_value = Mock(value=[])
        assert chain.get_token_balance(Keypair().pubkey(), Pubkey.from_string(MINT)) == 0.0

    def test_fee(self, chain, rpc):
        rpc.get_fee_for_message.return_value = Mock(value=5000)
        assert chain.estimate_fee("message") == 5000

    def test_missing_fee(self, chain, rpc):
        rpc.get_fee_for_message.return_value = Mock(value=None)
        with pytest.raises(ChainError):
            chain.estimate_fee("message")

    def test_transfer_signs_and_sends(self, chain, rpc):
        sender = Keypair()
        rpc.send_raw_transaction.return_value = Mock(value="5igsig")

        signature = chain.transfer(sender, Keypair().pubkey(), 1000, blockhash=Hash.default())

        assert signature == "5igsig"
        raw = rpc.send_raw_transaction.call_args.args[0]
        assert isinstance(raw, bytes) and len(raw) > 64
        rpc.get_latest_blockhash.assert_not_called()

    def test_transfer_rejects_non_positive(self, chain, rpc):
        with pytest.raises(ValueError):
            chain.transfer(Keypair(), Keypair().pubkey(), 0)
        rpc.send_raw_transaction.assert_not_called()

    def test_transfer_message_fee_payer(self):
        payer = Keypair().pubkey()
        message = ChainClient.build_transfer_message(payer, Keypair().pubkey(), 10, Hash.default())
        assert message.account_keys[0] == payer
        assert message.recent_blockhash == Hash.default()


@pytest.mark.integration
def test_live_rpc_balance():
    """Needs network access; run with: pytest -m integration"""
    chain = ChainClient("https://api.mainnet-beta.solana.com")
    assert chain.get_balance_lamports(Pubkey.from_string("So11111111111111111111111111111111111111112")) > 0
