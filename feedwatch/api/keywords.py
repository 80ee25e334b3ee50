"""
Keywords API - manage the search terms polled by the Reddit fetcher.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from feedwatch.schemas.api_requests import KeywordRequest
from feedwatch.services.keywords import (
    KeywordExistsError,
    KeywordNotFoundError,
    add_keyword,
    list_keywords,
    remove_keyword,
)
from feedwatch.services.storage import KeyValueStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/keywords", tags=["keywords"])


@router.get("")
async def get_keywords(store: KeyValueStore = Depends(get_store)):
    return {"keywords": await list_keywords(store)}


@router.post("", status_code=201)
async def create_keyword(
    payload: KeywordRequest,
    store: KeyValueStore = Depends(get_store),
):
    try:
        keywords = await add_keyword(store, payload.keyword)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid keyword")
    except KeywordExistsError:
        raise HTTPException(status_code=409, detail="Keyword already exists")
    return {"message": "Keyword added successfully", "keywords": keywords}


@router.delete("")
async def delete_keyword(
    keyword: Optional[str] = Query(None),
    store: KeyValueStore = Depends(get_store),
):
    if not keyword:
        raise HTTPException(status_code=400, detail="Keyword parameter required")
    try:
        keywords = await remove_keyword(store, keyword)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid keyword")
    except KeywordNotFoundError:
        raise HTTPException(status_code=404, detail="Keyword not found")
    return {"message": "Keyword deleted successfully", "keywords": keywords}
