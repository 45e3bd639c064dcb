from typing import Optional

from fastapi import APIRouter, Query

from formbuilder.schemas.form import OptionPage
from formbuilder.services.option_loader import option_loaders

router = APIRouter()


@router.get("/", response_model=OptionPage)
def load_options(
    endpoint: str = Query(..., description="Remote endpoint of the dropdown"),
    search: str = Query("", description="Search text"),
    page_token: Optional[str] = Query(None, description="Token of the page to load"),
    client: Optional[str] = Query(None, description="Dropdown key; newer queries with the same key supersede older ones")
):
    """
    Load one page of options for an api-dropdown field or column.
    """
    return option_loaders.get(client, endpoint).load_page(search, page_token, endpoint)
