"""Test catalog API routes.

Read-only access to panels and test definitions for the test picker.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from labdesk.errors import NotFoundError
from labdesk.schemas.catalog import Panel, TestDefinition
from labdesk.services.catalog import ALL_PANEL_ID, TestCatalog, get_catalog

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("/panels", response_model=list[Panel])
async def list_panels(catalog: TestCatalog = Depends(get_catalog)) -> list[Panel]:
    """List panels in catalog order."""
    return list(catalog.panels)


@router.get("/tests", response_model=list[TestDefinition])
async def list_tests(
    catalog: TestCatalog = Depends(get_catalog),
    q: str = Query("", max_length=100),
    panel: str = ALL_PANEL_ID,
) -> list[TestDefinition]:
    """List tests, optionally narrowed to a panel and a search query.

    Raises:
        HTTPException: 404 if the panel does not exist.
    """
    try:
        in_panel = catalog.tests_by_panel(panel)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    if not q:
        return in_panel
    matches = {d.id for d in catalog.search(q)}
    return [d for d in in_panel if d.id in matches]


@router.get("/tests/{test_id}", response_model=TestDefinition)
async def get_test(test_id: str, catalog: TestCatalog = Depends(get_catalog)) -> TestDefinition:
    """Get one test definition.

    Raises:
        HTTPException: 404 if the test is not in the catalog.
    """
    try:
        return catalog.lookup(test_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
