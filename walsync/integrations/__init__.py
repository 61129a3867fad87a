# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin and other framework integrations.
"""

from walsync.integrations.fastapi import (
    get_walsync_scheduler,
    register_walsync_routes,
    verify_api_key,
    walsync_lifespan,
)

__all__ = [
    "get_walsync_scheduler",
    "register_walsync_routes",
    "verify_api_key",
    "walsync_lifespan",
]
