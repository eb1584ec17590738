"""
Application constants.

Centralized constants for the indexer.
"""

# ========================================================================
# CHAIN CONSTANTS
# ========================================================================

# Reserved all-zero address that denotes the chain's native asset (BNB)
NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"

# Airdrop contract events
AIRDROP_ERC20_EVENT = "AirdropERC20"
AIRDROP_BNB_EVENT = "AirdropBNB"

# Solidity signatures (topic0 = keccak256 of these)
AIRDROP_ERC20_SIGNATURE = "AirdropERC20(address,uint256)"
AIRDROP_BNB_SIGNATURE = "AirdropBNB(address,uint256)"

# Minimal ABI for the airdrop contract: both events and the token() view
AIRDROP_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "AirdropBNB",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "recipient", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "AirdropERC20",
        "type": "event",
    },
    {
        "inputs": [],
        "name": "token",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
]

# ========================================================================
# TIMEOUTS & RETRIES
# ========================================================================

# Blockchain operation timeouts (in seconds)
BLOCKCHAIN_TIMEOUT = 30.0  # Single RPC call (get_block, eth_call)
BLOCKCHAIN_LONG_TIMEOUT = 120.0  # Backfill eth_getLogs over a range

# WebSocket subscription reconnects
WS_RECONNECT_BASE_DELAY = 1.0  # 1s, 2s, 4s, ...
WS_RECONNECT_MAX_DELAY = 30.0  # cap
WS_MAX_RECONNECT_ATTEMPTS = 10  # consecutive failures before fatal

# Processor batch retries (enrichment and persistence)
PROCESSOR_MAX_RETRIES = 5
PROCESSOR_RETRY_BASE_DELAY = 1.0
PROCESSOR_RETRY_MAX_DELAY = 30.0

# ========================================================================
# PIPELINE
# ========================================================================

DEFAULT_DISPATCHER_CAPACITY = 100  # batches
DEFAULT_BATCH_SIZE = 50  # events, flushed on block boundary
BATCH_LINGER_SECONDS = 2.0  # idle time before a partial batch is flushed
SHUTDOWN_GRACE_SECONDS = 10.0

# Backfill chunk for eth_getLogs on (re)subscribe
BACKFILL_CHUNK_BLOCKS = 2000

# Rows per INSERT statement; PostgreSQL caps bind parameters at 32767
INSERT_CHUNK_ROWS = 1000
