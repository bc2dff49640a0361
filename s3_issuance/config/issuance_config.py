"""
Issuance Configuration Module

Contains the constants used when staging, publishing and monitoring S3
securities: gas limits per transaction kind, chain defaults, polling
intervals and the function signatures of the deployed contracts.
"""

# Chain defaults (Rinkeby, as used by the issuance desk)
DEFAULT_CHAIN_ID = 4
DEFAULT_RPC_URL = "http://localhost:8545"

# Fee levels: start..start*10 gwei in steps of FEE_LEVEL_STEP_GWEI
DEFAULT_START_GAS_PRICE_GWEI = 5
FEE_LEVEL_MULTIPLIER = 10
FEE_LEVEL_STEP_GWEI = 2
WEI_PER_GWEI = 10**9

# Gas limits per transaction kind
GAS_LIMITS = {
    "initialize": 500_000,
    "transfer": 500_000,
    "deploy_logic": 1_500_000,
    "deploy_front": 1_000_000,
    "migrate": 500_000,
    "set_front": 500_000,
    "change_admin": 100_000,
    "set_resolver": 100_000,
    "resolve": 500_000,
    "deploy_cap_tables": 500_000,
    "deploy_administration": 1_500_000,
}

# Number of transactions the deploy-and-migrate stage consumes
DEPLOY_AND_MIGRATE_STEPS = 5

# Receipt polling: exponential backoff with a cap and an overall bound
RECEIPT_POLL_DELAY = 1.0  # seconds
RECEIPT_POLL_MAX_DELAY = 30.0  # seconds
RECEIPT_TIMEOUT = 30 * 60  # seconds; None polls forever

# Transfer monitor
MONITOR_POLL_INTERVAL = 15.0  # seconds between resolve_range passes
DEFAULT_GAP_SIZE = 10  # consecutive Unused slots tolerated by active_requests

# Contract function signatures; selectors are derived once in calls.py
FUNCTION_SIGNATURES = {
    "initialize": "initialize(uint256,address)",
    "transfer": "transfer(uint256,address,address,uint256)",
    "migrate": "migrate(uint256,address)",
    "setFront": "setFront(address)",
    "setResolver": "setResolver(address)",
    "transferOwnership": "transferOwnership(address)",
    "resolve": "resolve(uint256,uint16)",
}

# Compiled artifacts, by the command that needs them
ISSUANCE_ARTIFACTS = ("SimplifiedTokenLogic", "TokenFront")
CAP_TABLES_ARTIFACT = "CapTables"
ADMINISTRATION_ARTIFACT = "Administration"

# Default file names used by the command-line tools
DEFAULT_DECLARATION_FILE = "S3-declaration.json"
DEFAULT_REPORT_FILE = "S3-report.json"
DEFAULT_NEW_RESOLVER_FILE = "S3-newResolver.json"
DEFAULT_INIT_FILE = "S3-init.json"
DEFAULT_ADMINISTRATION_FILE = "S3-administration.json"
DEFAULT_ADMINISTRATION_REPORT_FILE = "S3-administration-report.json"

# Address getters audited on a deployed Administration contract
ADMINISTRATION_FIELDS = ("tokenLogic", "tokenFront", "cosignerA", "cosignerB", "cosignerC")
