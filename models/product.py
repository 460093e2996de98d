from pydantic import BaseModel, Field

from enums.product_type import ProductType
from exceptions.cart import UnknownProductError


class ProductDTO(BaseModel):
    """Catalog entry. Prices are minor currency units (cents)."""
    sku: str
    name: str
    product_type: ProductType
    price_minor: int = Field(..., ge=0)
    add_on_allowed: bool = False


class CatalogDTO(BaseModel):
    """
    Product catalog with package definitions.

    Packages map a kit key (e.g. "fullKit") to the SKUs every team member
    receives when choosing that kit.
    """
    products: dict[str, ProductDTO]
    packages: dict[str, list[str]] = {}

    def get_product(self, sku: str) -> ProductDTO:
        product = self.products.get(sku)
        if product is None:
            raise UnknownProductError(sku)
        return product

    def get_package(self, package_key: str) -> list[ProductDTO]:
        skus = self.packages.get(package_key)
        if skus is None:
            raise UnknownProductError(package_key, "no such package")
        return [self.get_product(sku) for sku in skus]

    def get_add_on(self, sku: str) -> ProductDTO:
        product = self.get_product(sku)
        if not product.add_on_allowed:
            raise UnknownProductError(sku, "not available as an add-on")
        return product
