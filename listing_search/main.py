"""FastAPI application for listing search."""

import logging
from contextlib import asynccontextmanager

import logfire
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.datastructures import QueryParams
from starlette.requests import Request

from .compiler import FilterCompiler, FilterValidationError
from .config import CORS_ORIGINS, LOGFIRE_TOKEN, SEARCH_DEFAULT_PER_PAGE
from .database import get_db, init_db
from .schemas import RawFilterInput, SearchPage
from .search import ListingRepository, ListingSearchService

logger = logging.getLogger(__name__)

# Query parameters that control paging rather than filtering
PAGINATION_PARAMS = frozenset({"page", "per_page"})

# One compiler for the process; it holds no per-request state
compiler = FilterCompiler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield


app = FastAPI(
    title="Listing Search API",
    description="Faceted, spatial and school-aware search over MLS listings",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure Logfire for observability (after app creation)
if LOGFIRE_TOKEN:
    logfire.configure()
    logfire.instrument_fastapi(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_search_service(db: Session = Depends(get_db)) -> ListingSearchService:
    """Dependency for a search service bound to the request's session."""
    return ListingSearchService(ListingRepository(db), compiler=compiler)


def filters_from_query(params: QueryParams) -> RawFilterInput:
    """Flatten query parameters into the raw filter mapping.

    Repeated parameters (?city=Boston&city=Cambridge) become lists.
    """
    filters: RawFilterInput = {}
    for key in params.keys():
        if key in PAGINATION_PARAMS:
            continue
        values = params.getlist(key)
        filters[key] = values if len(values) > 1 else values[0]
    return filters


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Listing Search API"}


@app.get("/api/properties")
def search_properties(
    request: Request,
    page: int = 1,
    per_page: int = SEARCH_DEFAULT_PER_PAGE,
    service: ListingSearchService = Depends(get_search_service),
) -> SearchPage:
    """Search listings.

    Every query parameter other than page/per_page is a filter: status, city,
    zip, min_price, beds, bounds, polygon, school_grade, sort, and so on.
    Unknown parameters are ignored.
    """
    filters = filters_from_query(request.query_params)
    try:
        return service.search(filters, page=page, per_page=per_page)
    except FilterValidationError as e:
        logger.warning(f"Rejected search filters: {e}")
        raise HTTPException(status_code=400, detail=str(e)) from e
