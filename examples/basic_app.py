# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with walsync Integration.

A small product catalogue: products are written to PostgreSQL and every
write waits for the CDC cycle that copies it into the search index.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    DATABASE_URL: PostgreSQL connection URL (wal_level = logical)
    WALSYNC_SLOT_NAME: Replication slot name (default: elk_slot)
    WALSYNC_ADMIN_API_KEY: API key for admin endpoints

Schema:
    CREATE TABLE product (
        id bigserial PRIMARY KEY,
        name varchar(255) NOT NULL,
        description text,
        brand varchar(255),
        category_id bigint,
        owner_id bigint,
        price numeric(10, 2),
        updated timestamp DEFAULT now()
    );
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import asyncpg
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from walsync.env import create_config_from_env
from walsync.exceptions import CycleFailure, CycleTimeout
from walsync.integrations.fastapi import get_walsync_scheduler, walsync_lifespan
from walsync.registry import EntityMapping
from walsync.scheduler import synced_write
from walsync.sinks import InMemoryIndexSink


# ============================================================================
# Entity, mapping and index
# ============================================================================


@dataclass
class Product:
    """Product as stored in the index."""

    id: int
    name: str | None = None
    description: str | None = None
    brand: str | None = None
    category_id: int | None = None
    owner_id: int | None = None
    price: str | None = None
    updated: str | None = None


def product_from_row(row) -> Product:
    """Reconstructed rows carry literals; ids come back as integers or text."""
    return Product(
        id=int(row["id"]),
        name=row["name"],
        description=row["description"],
        brand=row["brand"],
        category_id=int(row["category_id"]) if row["category_id"] is not None else None,
        owner_id=int(row["owner_id"]) if row["owner_id"] is not None else None,
        price=str(row["price"]) if row["price"] is not None else None,
        updated=row["updated"],
    )


PRODUCT_MAPPING = EntityMapping(
    entity_type=Product,
    table="product",
    id_columns=("id",),
    non_id_columns=(
        "name",
        "description",
        "brand",
        "category_id",
        "owner_id",
        "price",
        "updated",
    ),
    factory=product_from_row,
)

product_index = InMemoryIndexSink(Product, key=lambda product: product.id)


def create_walsync_config():
    """
    Start from the environment and add the catalogue's own settings.
    """
    return create_config_from_env().with_updates(
        create_slot=True,
        journal_path=Path("./walsync_journal.db"),
    )


walsync_config = create_walsync_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.pool = await asyncpg.create_pool(walsync_config.connection_url)
    try:
        async with walsync_lifespan(
            app, walsync_config, [PRODUCT_MAPPING], [product_index]
        ):
            yield
    finally:
        await app.state.pool.close()


# Create FastAPI app
app = FastAPI(
    title="Product Catalogue with walsync",
    description="Example application keeping a search index in sync through CDC",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================================
# Application Routes
# ============================================================================


class ProductIn(BaseModel):
    """Writable product fields."""

    name: str
    description: str | None = None
    brand: str | None = None
    category_id: int | None = None
    owner_id: int | None = None
    price: Decimal | None = None


async def _synced(write):
    """Run a write, then wait for the index to catch up."""
    try:
        return await synced_write(get_walsync_scheduler(app), write)
    except CycleTimeout:
        # The write is committed; the index catches up on a later cycle.
        raise HTTPException(status_code=504, detail="Saved, index update pending")
    except CycleFailure as e:
        raise HTTPException(status_code=503, detail=f"Saved, index update failed: {e}")


@app.post("/products", status_code=201)
async def create_product(product: ProductIn) -> dict:
    """Insert a product and wait until it is searchable."""

    async def write():
        return await app.state.pool.fetchval(
            """
            INSERT INTO product (name, description, brand, category_id, owner_id, price)
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id
            """,
            product.name,
            product.description,
            product.brand,
            product.category_id,
            product.owner_id,
            product.price,
        )

    product_id = await _synced(write)
    return {"id": product_id, "indexed": product_index.get(product_id)}


@app.put("/products/{product_id}")
async def update_product(product_id: int, product: ProductIn) -> dict:
    async def write():
        return await app.state.pool.execute(
            """
            UPDATE product
            SET name = $2, description = $3, brand = $4, category_id = $5,
                owner_id = $6, price = $7, updated = now()
            WHERE id = $1
            """,
            product_id,
            product.name,
            product.description,
            product.brand,
            product.category_id,
            product.owner_id,
            product.price,
        )

    status = await _synced(write)
    if status == "UPDATE 0":
        raise HTTPException(status_code=404, detail="Product not found")
    return {"id": product_id, "indexed": product_index.get(product_id)}


@app.delete("/products/{product_id}")
async def delete_product(product_id: int) -> dict:
    async def write():
        return await app.state.pool.execute(
            "DELETE FROM product WHERE id = $1", product_id
        )

    status = await _synced(write)
    if status == "DELETE 0":
        raise HTTPException(status_code=404, detail="Product not found")
    return {"deleted": product_id}


@app.get("/search/products/{product_id}")
async def get_indexed_product(product_id: int) -> dict:
    """Read a product back from the index, not from PostgreSQL."""
    document = product_index.get(product_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Product not indexed")
    return document


# ============================================================================
# walsync Admin Endpoints (auto-registered by the lifespan)
# ============================================================================
#
# POST /admin/walsync/cycle   - Run a catch-up cycle
# GET  /admin/walsync/status  - Engine status
# GET  /admin/walsync/metrics - Counters and pending records
# GET  /admin/walsync/cycles  - Cycle journal
# POST /admin/walsync/resume  - Resume after an acknowledgement mismatch
# GET  /admin/walsync/health  - Health check
# GET  /admin/walsync/config  - Configuration (redacted)
#
# All admin endpoints require: Authorization: Bearer <WALSYNC_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
