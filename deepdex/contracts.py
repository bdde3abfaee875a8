"""Versioned on-disk schema and worker entry point contract identifiers."""

PROCESS_STORE_VERSION = 1
WALLET_SCHEMA_V1 = "wallet.v1"

SUPPORTED_PROCESS_STORE_VERSIONS = {
    PROCESS_STORE_VERSION,
}

# Worker entry point: "run strategy S for account A with config C, non-interactively".
WORKER_MODULE = "deepdex.bot.worker"
WORKER_COMMAND_ENV = "DEEPDEX_WORKER_COMMAND"
WALLET_PASSWORD_ENV = "DEEPDEX_WALLET_PASSWORD"
PM_PROCESS_ENV = "DEEPDEX_PM_PROCESS"
PM_PROCESS_NAME_ENV = "DEEPDEX_PM_NAME"
