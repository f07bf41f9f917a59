"""Configuration for the ledger cache service."""

import os

from cachecore.framework.config import ServiceConfig, env_list


class CacheServiceConfig(ServiceConfig):
    """Configuration for the ledger cache service."""

    def __init__(self) -> None:
        super().__init__(service_name="ledger-cache")

        # Ledger processes
        self.ao_token_id = os.getenv("LEDGER_CACHE_AO_TOKEN_ID", "0syT13r0s0tgPmIed95bJnuSqaD29HQNN8D3ElLSrsc")
        self.wallets_process_id = os.getenv("LEDGER_CACHE_WALLETS_PROCESS_ID", "rkAezEIgacJZ_dVuZHOKJR8WKpSDqLGfgPJrs_Es7CA")
        self.flp_registry_process_id = os.getenv("LEDGER_CACHE_FLP_REGISTRY_PROCESS_ID", "It-_AKlEfARBmJdbJew1nG9_hIaZt0t20wQc28mFGBE")
        self.flp_delegation_process_id = os.getenv("LEDGER_CACHE_FLP_DELEGATION_PROCESS_ID", "NRP0xtzeV9MHgwLmgD254erUB7mUjMBhBkYkNYkbNEo")

        self.tracked_token_ids = env_list(
            "LEDGER_CACHE_TRACKED_TOKEN_IDS",
            f"xU9zFkq3X2ZQ6olwNVvr1vUWIjc3kXTWr7xKQD6dh10,{self.ao_token_id},NG-0lVX882MG5nhARrSzyprEK6ejonHpdUmaaMPsHE8",
        )

        self.token_price_freshness_seconds = int(os.getenv("LEDGER_CACHE_TOKEN_PRICE_FRESHNESS", "300"))
        self.token_price_ttl = int(os.getenv("LEDGER_CACHE_TOKEN_PRICE_TTL", "86400"))
        self.tracked_token_max_retries = int(os.getenv("LEDGER_CACHE_TRACKED_TOKEN_MAX_RETRIES", "3"))
        self.tracked_token_retry_delay = float(os.getenv("LEDGER_CACHE_TRACKED_TOKEN_RETRY_DELAY", "1.0"))

        self.ledger_max_attempts = int(os.getenv("LEDGER_CACHE_LEDGER_MAX_ATTEMPTS", "3"))
        self.ledger_retry_delay = float(os.getenv("LEDGER_CACHE_LEDGER_RETRY_DELAY", "1.0"))
