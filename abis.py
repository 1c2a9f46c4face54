# Minimal ABIs: only what the bot calls.

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
MULTICALL3_ABI = [{
    "inputs": [
        {"name": "requireSuccess", "type": "bool"},
        {"components": [{"name": "target", "type": "address"}, {"name": "callData", "type": "bytes"}],
         "name": "calls", "type": "tuple[]"},
    ],
    "name": "tryAggregate",
    "outputs": [
        {"components": [{"name": "success", "type": "bool"}, {"name": "returnData", "type": "bytes"}],
         "name": "returnData", "type": "tuple[]"},
    ],
    "stateMutability": "view",
    "type": "function",
}]


def _view(name, inputs, outputs):
    return {
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "name": name,
        "outputs": [{"name": n, "type": t} for n, t in outputs],
        "stateMutability": "view",
        "type": "function",
    }


COMET_ABI = [
    _view("numAssets", [], [("", "uint8")]),
    {
        "inputs": [{"name": "i", "type": "uint8"}],
        "name": "getAssetInfo",
        "outputs": [{
            "components": [
                {"name": "offset", "type": "uint8"},
                {"name": "asset", "type": "address"},
                {"name": "priceFeed", "type": "address"},
                {"name": "scale", "type": "uint64"},
                {"name": "borrowCollateralFactor", "type": "uint64"},
                {"name": "liquidateCollateralFactor", "type": "uint64"},
                {"name": "liquidationFactor", "type": "uint64"},
                {"name": "supplyCap", "type": "uint128"},
            ],
            "name": "",
            "type": "tuple",
        }],
        "stateMutability": "view",
        "type": "function",
    },
    _view("baseToken", [], [("", "address")]),
    _view("baseScale", [], [("", "uint256")]),
    _view("baseTokenPriceFeed", [], [("", "address")]),
    _view("isLiquidatable", [("account", "address")], [("", "bool")]),
    _view("userBasic", [("", "address")], [
        ("principal", "int104"),
        ("baseTrackingIndex", "uint64"),
        ("baseTrackingAccrued", "uint64"),
        ("assetsIn", "uint16"),
        ("_reserved", "uint8"),
    ]),
    _view("getCollateralReserves", [("asset", "address")], [("", "uint256")]),
    _view("quoteCollateral", [("asset", "address"), ("baseAmount", "uint256")], [("", "uint256")]),
    _view("getPrice", [("priceFeed", "address")], [("", "uint256")]),
    _view("getReserves", [], [("", "int256")]),
    _view("targetReserves", [], [("", "uint256")]),
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "src", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "Withdraw",
        "type": "event",
    },
]

# Output types used when decoding Multicall3 return data
OUTPUT_TYPES = {
    "isLiquidatable": ["bool"],
    "userBasic": ["int104", "uint64", "uint64", "uint16", "uint8"],
    "getCollateralReserves": ["uint256"],
    "quoteCollateral": ["uint256"],
    "getPrice": ["uint256"],
    "getReserves": ["int256"],
    "targetReserves": ["uint256"],
    "balanceOf": ["uint256"],
}

ERC20_ABI = [
    _view("balanceOf", [("account", "address")], [("", "uint256")]),
    _view("decimals", [], [("", "uint8")]),
]

LIQUIDATOR_ABI = [{
    "inputs": [
        {"name": "comet", "type": "address"},
        {"name": "liquidatableAccounts", "type": "address[]"},
        {"name": "assets", "type": "address[]"},
        {"name": "maxAmountsToPurchase", "type": "uint256[]"},
        {"name": "flashLoanPairToken", "type": "address"},
        {"name": "flashLoanPoolFee", "type": "uint24"},
        {"name": "liquidationThreshold", "type": "uint256"},
    ],
    "name": "absorbAndArbitrage",
    "outputs": [],
    "stateMutability": "nonpayable",
    "type": "function",
}]
