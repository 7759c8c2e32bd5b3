"""Shared FastAPI dependencies for route handlers."""

from fastapi import HTTPException, Request

from localvault.categories import DataCategory
from localvault.services.vault_service import VaultService


def get_vault_service(request: Request) -> VaultService:
    """Return the process-wide VaultService created at startup."""
    return request.app.state.vault


def get_category(category: str) -> DataCategory:
    """Resolve a category path parameter or raise 404.

    Args:
        category: Category name from the path

    Returns:
        DataCategory

    Raises:
        HTTPException: 404 if the category is unknown
    """
    try:
        return DataCategory(category)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown data category: {category}") from None
