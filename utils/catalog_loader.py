"""
Product Catalog Loader

Loads product and package definitions from a JSON file.
Prices in the file are minor currency units (cents).

Usage:
    from utils.catalog_loader import load_catalog

    catalog = load_catalog()                       # config.CATALOG_PATH
    catalog = load_catalog("tests/catalog.json")   # explicit path
"""

import json
import logging
from functools import lru_cache
from pathlib import Path

import config
from models.product import CatalogDTO, ProductDTO

logger = logging.getLogger(__name__)


def load_catalog(path: str | Path | None = None) -> CatalogDTO:
    """
    Load the product catalog from JSON.

    Args:
        path: Catalog file path (defaults to config.CATALOG_PATH)

    Returns:
        CatalogDTO: Products keyed by SKU plus package definitions

    Raises:
        FileNotFoundError: If the catalog file doesn't exist
        json.JSONDecodeError: If JSON is malformed
        pydantic.ValidationError: If an entry has invalid fields
    """
    catalog_path = Path(path or config.CATALOG_PATH)

    if not catalog_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {catalog_path}")

    try:
        with open(catalog_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"❌ Failed to parse {catalog_path}: {e}")
        raise

    products = {
        sku: ProductDTO(sku=sku, **entry)
        for sku, entry in raw.get("products", {}).items()
    }
    catalog = CatalogDTO(products=products, packages=raw.get("packages", {}))

    # Packages must only reference known SKUs
    for package_key in catalog.packages:
        catalog.get_package(package_key)

    logger.info(f"✅ Loaded {len(catalog.products)} products and {len(catalog.packages)} packages from {catalog_path.name}")
    return catalog


@lru_cache(maxsize=1)
def get_default_catalog() -> CatalogDTO:
    return load_catalog()
