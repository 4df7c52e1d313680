"""
Chain access: RPC connection with fallbacks and Multicall3 batching.

All pool reads of one poll cycle travel in a single aggregate3 eth_call,
together with getBlockNumber() so every snapshot of the batch is tagged with
the block it was read at.
"""

import asyncio
from typing import List, Optional, Sequence, Tuple

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from web3 import Web3

from flash_arbitrage.exceptions import NetworkError
from flash_arbitrage.utils import get_logger

from . import abi

logger = get_logger(__name__)

CHAIN_NAMES = {
    1: "Ethereum Mainnet",
    10: "Optimism",
    8453: "Base",
    42161: "Arbitrum",
    43114: "Avalanche",
}

Call = Tuple[str, bytes]


def connect(
    rpc_urls: Sequence[str], chain_id: Optional[int] = None, timeout: float = 10.0
) -> Web3:
    """
    Connect to the first responsive RPC endpoint.

    Args:
        rpc_urls: Endpoints in priority order
        chain_id: Expected chain id; a mismatch is fatal for that endpoint
        timeout: Per-request deadline in seconds

    Raises:
        NetworkError: If every endpoint fails
    """
    last_error = None
    for rpc_url in rpc_urls:
        if not rpc_url or not rpc_url.strip():
            continue
        try:
            logger.info(f"Connecting to RPC: {rpc_url}")
            web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

            # Query the chain directly; is_connected() is unreliable on some providers
            actual_chain_id = web3.eth.chain_id
            block = web3.eth.block_number
            if chain_id is not None and actual_chain_id != chain_id:
                raise ValueError(f"chain id {actual_chain_id} != configured {chain_id}")

            chain_name = CHAIN_NAMES.get(actual_chain_id, f"Chain {actual_chain_id}")
            logger.info(f"Connected to {chain_name} (block #{block:,})")
            return web3
        except Exception as e:
            last_error = e
            logger.warning(f"RPC connection failed: {e}")

    raise NetworkError(
        f"Failed to connect to any RPC endpoint. Last error: {last_error}",
        endpoint=rpc_urls[-1] if rpc_urls else None,
    )


def submission_web3(rpc_url: str, timeout: float = 10.0) -> Web3:
    """
    Web3 for a broadcast-only endpoint such as a private-mempool RPC.

    Not probed: such endpoints often answer nothing but eth_sendRawTransaction.
    """
    logger.info(f"Broadcasting through private RPC: {rpc_url}")
    return Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))


def encode_aggregate3(calls: Sequence[Call]) -> bytes:
    """Encode aggregate3 calldata; every sub-call may fail independently."""
    entries = [(Web3.to_checksum_address(target), True, data) for target, data in calls]
    entries.append(
        (
            Web3.to_checksum_address(abi.MULTICALL3_ADDRESS),
            False,
            abi.selector(abi.MULTICALL3_GET_BLOCK_NUMBER),
        )
    )
    return abi.selector(abi.MULTICALL3_AGGREGATE3) + abi_encode(
        ["(address,bool,bytes)[]"], [entries]
    )


def decode_aggregate3(raw: bytes, expected: int) -> Tuple[int, List[Optional[bytes]]]:
    """
    Decode aggregate3 output into (block_number, per-call results).

    A failed or empty sub-call yields None at its position.
    """
    (entries,) = abi_decode(["(bool,bytes)[]"], bytes(raw))
    if len(entries) != expected + 1:
        raise ValueError(f"aggregate3 returned {len(entries)} results, expected {expected + 1}")

    results: List[Optional[bytes]] = []
    for success, data in entries[:-1]:
        results.append(bytes(data) if success and data else None)

    ok, block_data = entries[-1]
    if not ok:
        raise ValueError("getBlockNumber() failed inside aggregate3")
    (block_number,) = abi_decode(["uint256"], bytes(block_data))
    return block_number, results


class MulticallClient:
    """Runs aggregate3 batches through a blocking web3 instance off the event loop."""

    def __init__(self, web3: Web3, address: str = abi.MULTICALL3_ADDRESS):
        self.web3 = web3
        self.address = Web3.to_checksum_address(address)

    def _call(self, calldata: bytes) -> bytes:
        return self.web3.eth.call({"to": self.address, "data": calldata})

    async def aggregate(self, calls: Sequence[Call]) -> Tuple[int, List[Optional[bytes]]]:
        """
        Execute one batch.

        Raises:
            NetworkError: On any transport or batch-level decode failure
        """
        calldata = encode_aggregate3(calls)
        loop = asyncio.get_running_loop()
        try:
            raw = await loop.run_in_executor(None, self._call, calldata)
            return decode_aggregate3(raw, len(calls))
        except Exception as e:
            endpoint = getattr(self.web3.provider, "endpoint_uri", None)
            raise NetworkError(f"Multicall batch failed: {e}", endpoint=endpoint) from e
