"""
Built-in cost rates.

Laravel Cloud published pricing, US East region. All rates in USD.
Time dimensions are per second, count dimensions per unit (``per_1k_*``
keys per thousand units), flat dimensions per month.
"""

# Shared by app and queue workers
COMPUTE_INSTANCES = {
    # Flex instances (Starter+)
    "flex-1c-256m": {"per_second": 0.00000165},
    "flex-2c-512m": {"per_second": 0.00000331},
    "flex-4c-2g": {"per_second": 0.00000661},
    # Pro instances (Growth+)
    "pro-1c-1g": {"per_second": 0.00000827},
    "pro-2c-4g": {"per_second": 0.00001650},
    "pro-4c-8g": {"per_second": 0.00003310},
}

DEFAULT_COSTS = {
    "compute": {
        "unit": "time",
        "active": "flex-1c-256m",
        "instances": COMPUTE_INSTANCES,
    },
    # $0.106/hour per vCPU
    "postgres": {
        "unit": "time",
        "per_second": 0.00002944,
    },
    "queue": {
        "unit": "time",
        "active": "flex-1c-256m",
        "instances": COMPUTE_INSTANCES,
    },
    # Valkey, billed by memory tier
    "cache": {
        "unit": "flat_monthly",
        "active": "250m",
        "tiers": {
            "250m": {"monthly": 6.00},
            "1g": {"monthly": 20.00},
            "2g": {"monthly": 40.00},
            "5g": {"monthly": 80.00},
            "10g": {"monthly": 140.00},
            "25g": {"monthly": 200.00},
            "50g": {"monthly": 272.00},
        },
        "estimated_operations_per_month": 10_000_000,
    },
    # Reverb
    "websocket": {
        "unit": "flat_monthly",
        "monthly": 5.00,
        "estimated_messages_per_month": 1_000_000,
    },
    # Quantity is gigabytes transferred
    "bandwidth": {
        "unit": "count",
        "per_gb": 0.10,
    },
    # Quantity is operations; per_gb_month is informational
    "storage": {
        "unit": "count",
        "per_1k_operations": 0.0005,
        "per_gb_month": 0.02,
    },
}

DEFAULT_ENVIRONMENTS = ("production", "staging")

SUPPORTED_PLANS = ("starter", "growth", "business", "enterprise")
