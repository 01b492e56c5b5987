from __future__ import annotations


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "inputs": list(inputs),
        "name": name,
        "outputs": list(outputs),
        "stateMutability": mutability,
        "type": "function",
    }


def _arg(name, typ, components=None):
    row = {"name": name, "type": typ}
    if components is not None:
        row["components"] = components
    return row


TRADE_COMPONENTS = [
    _arg("collateral", "uint256"),
    _arg("openPrice", "uint192"),
    _arg("tp", "uint192"),
    _arg("sl", "uint192"),
    _arg("trader", "address"),
    _arg("leverage", "uint32"),
    _arg("pairIndex", "uint16"),
    _arg("index", "uint8"),
    _arg("buy", "bool"),
]

BUILDER_FEE_COMPONENTS = [
    _arg("builder", "address"),
    _arg("builderFee", "uint32"),
]

ERC20_ABI = [
    _fn("balanceOf", [_arg("account", "address")], [_arg("", "uint256")], "view"),
    _fn("allowance", [_arg("owner", "address"), _arg("spender", "address")], [_arg("", "uint256")], "view"),
    _fn("approve", [_arg("spender", "address"), _arg("amount", "uint256")], [_arg("", "bool")]),
    _fn("decimals", [], [_arg("", "uint8")], "view"),
]

TRADING_ABI = [
    _fn(
        "openTrade",
        [
            _arg("t", "tuple", TRADE_COMPONENTS),
            _arg("bf", "tuple", BUILDER_FEE_COMPONENTS),
            _arg("orderType", "uint8"),
            _arg("slippageP", "uint256"),
        ],
    ),
    _fn(
        "closeTradeMarket",
        [
            _arg("pairIndex", "uint16"),
            _arg("index", "uint8"),
            _arg("closePercentage", "uint16"),
            _arg("marketPrice", "uint192"),
            _arg("slippageP", "uint32"),
        ],
    ),
    _fn("cancelOpenLimitOrder", [_arg("pairIndex", "uint16"), _arg("index", "uint8")]),
    _fn("updateTp", [_arg("pairIndex", "uint16"), _arg("index", "uint8"), _arg("newTp", "uint192")]),
    _fn("updateSl", [_arg("pairIndex", "uint16"), _arg("index", "uint8"), _arg("newSl", "uint192")]),
    _fn("isPaused", [], [_arg("", "bool")], "view"),
]

TRADING_STORAGE_ABI = [
    _fn(
        "openTradesCount",
        [_arg("trader", "address"), _arg("pairIndex", "uint16")],
        [_arg("", "uint32")],
        "view",
    ),
    _fn(
        "getOpenTrade",
        [_arg("trader", "address"), _arg("pairIndex", "uint16"), _arg("index", "uint8")],
        [_arg("", "tuple", TRADE_COMPONENTS)],
        "view",
    ),
]

VAULT_ABI = ERC20_ABI + [
    _fn("deposit", [_arg("assets", "uint256"), _arg("receiver", "address")], [_arg("shares", "uint256")]),
    _fn(
        "redeem",
        [_arg("shares", "uint256"), _arg("receiver", "address"), _arg("owner", "address")],
        [_arg("assets", "uint256")],
    ),
    _fn("makeWithdrawRequest", [_arg("shares", "uint256"), _arg("owner", "address")]),
    _fn("convertToAssets", [_arg("shares", "uint256")], [_arg("", "uint256")], "view"),
    _fn("totalAssets", [], [_arg("", "uint256")], "view"),
    _fn("currentEpoch", [], [_arg("", "uint256")], "view"),
    _fn("currentEpochStart", [], [_arg("", "uint256")], "view"),
    _fn("currentEpochEnd", [], [_arg("", "uint256")], "view"),
    _fn("withdrawalsOpen", [], [_arg("", "bool")], "view"),
    _fn("collateralizationP", [], [_arg("", "uint256")], "view"),
    _fn(
        "withdrawRequests",
        [_arg("owner", "address"), _arg("withdrawEpoch", "uint16")],
        [_arg("", "uint256")],
        "view",
    ),
]
