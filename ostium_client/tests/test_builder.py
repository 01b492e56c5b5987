import pytest
from web3 import Web3

from ostium_client.chain.abi import ERC20_ABI, TRADING_ABI, VAULT_ABI
from ostium_client.config.network import NetworkConfig
from ostium_client.domain import (
    ApproveAutoWithdrawParams,
    ApproveParams,
    CancelOrderParams,
    CloseTradeParams,
    DepositParams,
    OperationKind,
    OrderType,
    PlaceOrderParams,
    RedeemParams,
    UpdateStopLossParams,
    WithdrawRequestParams,
)
from ostium_client.errors import ValidationError
from ostium_client.execution import TransactionBuilder

NETWORK = NetworkConfig.mainnet("http://127.0.0.1:8545")
SENDER = Web3.to_checksum_address("0x" + "11" * 20)
OTHER = Web3.to_checksum_address("0x" + "22" * 20)


def _selector(sig: str) -> bytes:
    return bytes(Web3.keccak(text=sig)[:4])


def _decode(abi, data: bytes):
    contract = Web3().eth.contract(abi=abi)
    fn, args = contract.decode_function_input(data)
    return fn.fn_name, args


def _fields(struct) -> list:
    return list(struct.values()) if isinstance(struct, dict) else list(struct)


def test_open_trade_encoding() -> None:
    builder = TransactionBuilder(NETWORK)
    params = PlaceOrderParams.market(
        pair_index=1, collateral=100, leverage=10, is_long=True, open_price=3000.5, take_profit=3500, slippage=2
    )
    payload = builder.build(params, SENDER)
    assert payload.operation == OperationKind.OPEN_TRADE
    assert payload.to == NETWORK.trading
    assert payload.data[:4] == _selector(
        "openTrade((uint256,uint192,uint192,uint192,address,uint32,uint16,uint8,bool),(address,uint32),uint8,uint256)"
    )
    name, args = _decode(TRADING_ABI, payload.data)
    assert name == "openTrade"
    collateral, open_price, tp, sl, trader, leverage, pair, index, buy = _fields(args["t"])
    assert collateral == 100 * 10**6
    assert open_price == 3000_500000000000000000
    assert tp == 3500 * 10**18
    assert sl == 0
    assert trader == SENDER
    assert leverage == 1000
    assert (pair, index, buy) == (1, 0, True)
    assert args["orderType"] == int(OrderType.MARKET)
    assert args["slippageP"] == 200


@pytest.mark.parametrize(
    "overrides",
    [
        {"collateral": 0},
        {"collateral": -5},
        {"leverage": 1},
        {"leverage": 1001},
        {"slippage": 101},
        {"slippage": -1},
        {"open_price": None},
        {"trade_index": 3},
        {"pair_index": -1},
        {"pair_index": "abc"},
        {"trade_index": 1.5},
        {"builder_fee_bps": "ten"},
        {"builder_fee_bps": 2**32},
    ],
)
def test_open_trade_validation(overrides: dict) -> None:
    base = dict(pair_index=0, collateral=50, leverage=5, is_long=False, open_price=60000.0)
    base.update(overrides)
    with pytest.raises(ValidationError) as err:
        TransactionBuilder(NETWORK).build(PlaceOrderParams(**base), SENDER)
    assert err.value.operation == "open_trade"


def test_close_trade_encoding_and_bounds() -> None:
    builder = TransactionBuilder(NETWORK)
    payload = builder.build(CloseTradeParams(pair_index=2, trade_index=1, market_price=100.0, close_percentage=50), SENDER)
    assert payload.data[:4] == _selector("closeTradeMarket(uint16,uint8,uint16,uint192,uint32)")
    _, args = _decode(TRADING_ABI, payload.data)
    assert args["closePercentage"] == 5000
    assert args["marketPrice"] == 100 * 10**18
    with pytest.raises(ValidationError):
        builder.build(CloseTradeParams(pair_index=2, trade_index=1, market_price=100.0, close_percentage=0), SENDER)
    with pytest.raises(ValidationError):
        builder.build(CloseTradeParams(pair_index=2, trade_index=1, market_price=100.0, close_percentage=101), SENDER)


def test_order_management_selectors() -> None:
    builder = TransactionBuilder(NETWORK)
    cancel = builder.build(CancelOrderParams(pair_index=3, trade_index=2), SENDER)
    assert cancel.data[:4] == _selector("cancelOpenLimitOrder(uint16,uint8)")
    sl = builder.build(UpdateStopLossParams(pair_index=3, trade_index=2, price=90.0), SENDER)
    assert sl.data[:4] == _selector("updateSl(uint16,uint8,uint192)")
    with pytest.raises(ValidationError):
        builder.build(UpdateStopLossParams(pair_index=3, trade_index=2, price=0), SENDER)


def test_non_numeric_indices_and_amounts_are_validation_errors() -> None:
    builder = TransactionBuilder(NETWORK)
    with pytest.raises(ValidationError) as err:
        builder.build(CancelOrderParams(pair_index="abc", trade_index=0), SENDER)
    assert err.value.operation == "cancel_order"
    with pytest.raises(ValidationError):
        builder.build(UpdateStopLossParams(pair_index=1, trade_index=None, price=90.0), SENDER)
    with pytest.raises(ValidationError):
        builder.build(ApproveParams(token=NETWORK.usdc, spender=OTHER, amount="lots"), SENDER)
    with pytest.raises(ValidationError):
        builder.build(ApproveParams(token=NETWORK.usdc, spender=OTHER, amount=2**256), SENDER)
    assert builder.build(CancelOrderParams(pair_index="3", trade_index=2.0), SENDER).data[:4] == _selector(
        "cancelOpenLimitOrder(uint16,uint8)"
    )


def test_approve_targets_token() -> None:
    payload = TransactionBuilder(NETWORK).build(
        ApproveParams(token=NETWORK.usdc, spender=NETWORK.trading_storage, amount=5 * 10**6), SENDER
    )
    assert payload.to == NETWORK.usdc
    name, args = _decode(ERC20_ABI, payload.data)
    assert name == "approve"
    assert args["spender"] == NETWORK.trading_storage
    assert args["amount"] == 5 * 10**6
    with pytest.raises(ValidationError):
        TransactionBuilder(NETWORK).build(ApproveParams(token="0x1234", spender=OTHER, amount=1), SENDER)


def test_vault_operations() -> None:
    builder = TransactionBuilder(NETWORK)

    dep = builder.build(DepositParams(amount=250.5), SENDER)
    assert dep.to == NETWORK.vault
    name, args = _decode(VAULT_ABI, dep.data)
    assert name == "deposit"
    assert args["assets"] == 250_500000
    assert args["receiver"] == SENDER

    req = builder.build(WithdrawRequestParams(shares=12.25), SENDER)
    assert req.data[:4] == _selector("makeWithdrawRequest(uint256,address)")

    auto = builder.build(ApproveAutoWithdrawParams(shares=1.0), SENDER)
    name, args = _decode(VAULT_ABI, auto.data)
    assert name == "approve"
    assert args["spender"] == NETWORK.auto_withdraw_spender

    red = builder.build(RedeemParams(shares=3, receiver=OTHER), SENDER)
    name, args = _decode(VAULT_ABI, red.data)
    assert name == "redeem"
    assert args["receiver"] == OTHER
    assert args["owner"] == SENDER


@pytest.mark.parametrize(
    "params",
    [
        DepositParams(amount=0),
        DepositParams(amount=0.0000001),
        WithdrawRequestParams(shares=-1),
        RedeemParams(shares=0),
        ApproveAutoWithdrawParams(shares=0),
    ],
)
def test_vault_amounts_must_be_positive(params) -> None:
    with pytest.raises(ValidationError):
        TransactionBuilder(NETWORK).build(params, SENDER)


def test_unknown_params_rejected() -> None:
    with pytest.raises(ValidationError):
        TransactionBuilder(NETWORK).build(object(), SENDER)
