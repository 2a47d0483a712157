"""Defaults shared by the runtime, the cache and transaction templates."""

DEFAULT_DEDUP_INTERVAL_SECONDS = 2.0
DEFAULT_ACCOUNT_CACHE_TTL_SECONDS = 10.0
DEFAULT_ACCOUNT_BATCH_MAX_SIZE = 100
DEFAULT_ACCOUNT_BATCH_INTERVAL_SECONDS = 0.05
DEFAULT_BLOCKHASH_CACHE_TTL_SECONDS = 0.25
DEFAULT_MAX_CHAIN_ITERATIONS = 64
DEFAULT_TREE_DEPTH = 10
DEFAULT_CACHE_MAX_ENTRIES = 1000
DEFAULT_CACHE_MAX_AGE_SECONDS = 600.0

DEFAULT_COMMITMENT = "confirmed"
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_CONFIRM_TIMEOUT = 60.0
DEFAULT_CONFIRM_POLL_INTERVAL = 0.5
DEFAULT_NOT_FOUND_RETRIES = 5
DEFAULT_NOT_FOUND_RETRY_INTERVAL = 0.5

# 8-byte prefix identifying an event payload emitted into the program logs
EVENT_DISCRIMINATOR_LENGTH = 8
PROGRAM_DATA_LOG_PREFIX = "Program data: "

CLUSTER_RPC_URLS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "local": "http://localhost:8899",
}

COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")

UNRESOLVED = "<unresolved>"
