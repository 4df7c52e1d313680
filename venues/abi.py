"""
Minimal call signatures for on-chain reads and the settlement contract.

Encoding and decoding go through eth_abi against these signatures, so every
venue read can be folded into a single Multicall3 batch.
"""

from typing import Dict

from web3 import Web3

# Multicall3 is deployed at the same address on every major EVM chain
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
MULTICALL3_AGGREGATE3 = "aggregate3((address,bool,bytes)[])"
MULTICALL3_GET_BLOCK_NUMBER = "getBlockNumber()"

# Constant-product pairs (Uniswap V2 / Sushi / Camelot V2)
V2_GET_RESERVES = "getReserves()"
V2_GET_RESERVES_OUTPUT = ["uint112", "uint112", "uint32"]

# Concentrated-liquidity pools (Uniswap V3 / Sushi V3 / Ramses)
V3_SLOT0 = "slot0()"
V3_SLOT0_OUTPUT = ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"]
V3_LIQUIDITY = "liquidity()"
V3_LIQUIDITY_OUTPUT = ["uint128"]

# Discrete-bin pairs (Trader Joe Liquidity Book v2.1)
LB_GET_ACTIVE_ID = "getActiveId()"
LB_GET_BIN_STEP = "getBinStep()"
LB_GET_RESERVES = "getReserves()"
LB_GET_BIN = "getBin(uint24)"
LB_UINT24_OUTPUT = ["uint24"]
LB_UINT16_OUTPUT = ["uint16"]
LB_RESERVES_OUTPUT = ["uint128", "uint128"]

# Settlement contract (flash-loan executor)
STEP_TUPLE = "(address,address,address,uint256,uint256,bytes)"
EXECUTE_ARBITRAGE = (
    f"executeArbitrage(address,address,uint256,{STEP_TUPLE}[],uint256)"
)
EXECUTE_ARBITRAGE_INPUT = ["address", "address", "uint256", f"{STEP_TUPLE}[]", "uint256"]
ARBITRAGE_EXECUTED_EVENT = "ArbitrageExecuted(address,uint256,uint256)"

# Custom errors raised by the settlement contract, plus the Solidity builtins
EXECUTOR_ERRORS: Dict[str, list] = {
    "InsufficientProfit(uint256,uint256)": ["uint256", "uint256"],
    "AdapterNotApproved(address)": ["address"],
    "EmptySwapSteps()": [],
    "NotAuthorized()": [],
    "ContractPaused()": [],
    "ZeroAddress()": [],
    "ZeroAmount()": [],
    "Error(string)": ["string"],
    "Panic(uint256)": ["uint256"],
}

# Arbitrum NodeInterface precompile (virtual contract, eth_call only)
NODE_INTERFACE_ADDRESS = "0x00000000000000000000000000000000000000C8"
NODE_INTERFACE_GAS_COMPONENTS = "gasEstimateComponents(address,bool,bytes)"
NODE_INTERFACE_GAS_COMPONENTS_OUTPUT = ["uint64", "uint64", "uint256", "uint256"]


def selector(signature: str) -> bytes:
    """4-byte function selector for a canonical signature."""
    return bytes(Web3.keccak(text=signature)[:4])


def event_topic(signature: str) -> bytes:
    """topic0 for an event signature."""
    return bytes(Web3.keccak(text=signature))


ERROR_SELECTORS: Dict[bytes, str] = {selector(sig): sig for sig in EXECUTOR_ERRORS}
