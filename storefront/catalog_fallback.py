"""Static catalog served when the database cannot answer catalog reads."""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

DB_UNAVAILABLE_MESSAGE = "Serving mock data: database connection unavailable"
DB_QUERY_FAILED_MESSAGE = "Serving mock data: database query failed"
NO_CATEGORIES_MESSAGE = "No categories in the database, serving mock data"

_MOCK_CATEGORIES: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "Sample Category 1",
        "slug": "sample-category-1",
        "description": "A sample category",
        "parent_id": None,
        "image": "https://via.placeholder.com/300",
        "icon": None,
        "sort_order": 0,
        "is_active": True,
    },
    {
        "id": 2,
        "name": "Sample Category 2",
        "slug": "sample-category-2",
        "description": "Another sample category",
        "parent_id": None,
        "image": "https://via.placeholder.com/300",
        "icon": None,
        "sort_order": 1,
        "is_active": True,
    },
]

_MOCK_PRODUCTS: List[Dict[str, Any]] = [
    {
        "id": 1,
        "name": "Sample Product 1",
        "description": "A sample product",
        "price": 99.99,
        "discount_price": None,
        "effective_price": 99.99,
        "images": [{"url": "https://via.placeholder.com/500", "alt": "Sample Product 1"}],
        "category": {"id": 1, "name": "Sample Category 1", "slug": "sample-category-1"},
        "brand": None,
        "stock": 0,
        "sku": None,
        "average_rating": 0.0,
        "total_reviews": 0,
        "is_featured": True,
        "is_active": True,
        "tags": [],
        "specifications": [],
    },
    {
        "id": 2,
        "name": "Sample Product 2",
        "description": "Another sample product",
        "price": 199.99,
        "discount_price": None,
        "effective_price": 199.99,
        "images": [{"url": "https://via.placeholder.com/500", "alt": "Sample Product 2"}],
        "category": {"id": 1, "name": "Sample Category 1", "slug": "sample-category-1"},
        "brand": None,
        "stock": 0,
        "sku": None,
        "average_rating": 0.0,
        "total_reviews": 0,
        "is_featured": True,
        "is_active": True,
        "tags": [],
        "specifications": [],
    },
]


def mock_products() -> List[Dict[str, Any]]:
    return copy.deepcopy(_MOCK_PRODUCTS)


def mock_categories() -> List[Dict[str, Any]]:
    return copy.deepcopy(_MOCK_CATEGORIES)


def mock_product(product_id: Optional[int]) -> Dict[str, Any]:
    """The mock product with the given id, or the first one."""
    for product in _MOCK_PRODUCTS:
        if product["id"] == product_id:
            return copy.deepcopy(product)
    return copy.deepcopy(_MOCK_PRODUCTS[0])


def mock_category(category_id: Optional[int]) -> Dict[str, Any]:
    for category in _MOCK_CATEGORIES:
        if category["id"] == category_id:
            return copy.deepcopy(category)
    return copy.deepcopy(_MOCK_CATEGORIES[0])


def mock_product_page() -> Dict[str, Any]:
    products = mock_products()
    return {
        "items": products,
        "count": len(products),
        "pagination": {"page": 1, "pages": 1, "page_size": len(products), "total": len(products)},
        "mock": True,
    }
