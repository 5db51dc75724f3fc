from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import os
from dotenv import load_dotenv
from content_deduplicator import deduplicate
from errors import NotFoundError, ParseFailureError, SourceUnavailableError
from page_extractor import fill_missing_platforms
from pattern_analyzer import analyze_patterns
from screenshot_chain import MAX_RETRIES, get_default_chain
from smart_filter import filter_screenshots
from store_client import fetch_app_record
import logging
from typing import List

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO'), format='%(asctime)s - %(levelname)s - %(message)s')

app = FastAPI(
    title="App Screenshot Resolver API",
    description="API for resolving trustworthy App Store screenshot sets",
    version="1.0.0"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request models
class ScreenshotListRequest(BaseModel):
    urls: List[str]
    platform: str = "phone"

class ValidationRequest(BaseModel):
    app_id: str
    country: str = "us"
    screenshots: List[str] = []
    tablet_screenshots: List[str] = []
    tv_screenshots: List[str] = []

@app.get("/")
async def root():
    return {"message": "App Screenshot Resolver API is running"}

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    validator = get_default_chain().validator
    return {"status": "healthy", "validation_cache_entries": len(validator.cache)}

@app.get("/apps/{app_id}/screenshots")
async def get_app_screenshots(
    app_id: str,
    country: str = "us",
    force_refresh: bool = False,
    skip_validation: bool = False,
    fill_missing: bool = False,
    max_retries: int = Query(MAX_RETRIES, ge=0, le=5),
):
    """
    Resolve screenshots for an app

    Looks the app up, optionally scrapes the platforms the lookup left empty
    (fill_missing), then runs the resolution chain (primary data, page
    scraping, fallback) on the result.

    Returns:
        JSON response with the per-platform screenshot lists
    """
    try:
        record = await fetch_app_record(app_id, country)
        subject_id = str(record.id or app_id)
        if fill_missing:
            record = await fill_missing_platforms(record, subject_id, country)
        result = await get_default_chain().resolve(
            record,
            subject_id,
            country,
            force_refresh=force_refresh,
            skip_validation=skip_validation,
            max_retries=max_retries,
        )
        return {
            "status": "success",
            "app_id": subject_id,
            "bundle_id": record.app_id,
            "title": record.title,
            "country": country,
            **result.to_dict(),
        }

    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (SourceUnavailableError, ParseFailureError) as e:
        logging.warning(f"Lookup failed for {app_id}: {e}")
        raise HTTPException(status_code=502, detail=f"App Store unavailable: {e.message}")
    except HTTPException:
        raise
    except Exception as e:
        logging.exception(f"Error resolving screenshots for {app_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Screenshot resolution failed: {str(e)}")

@app.post("/analyze")
async def analyze(request: ScreenshotListRequest):
    """Pattern analysis and recommended filtering strategy for a URL list"""
    try:
        return analyze_patterns(request.urls, request.platform).to_dict()
    except Exception as e:
        logging.exception(f"Error analyzing screenshots: {e}")
        raise HTTPException(status_code=500, detail=f"Analysis failed: {str(e)}")

@app.post("/deduplicate")
async def deduplicate_screenshots(request: ScreenshotListRequest):
    try:
        screenshots = deduplicate(request.urls, request.platform)
        return {
            "screenshots": screenshots,
            "input_count": len(request.urls),
            "output_count": len(screenshots),
        }
    except Exception as e:
        logging.exception(f"Error deduplicating screenshots: {e}")
        raise HTTPException(status_code=500, detail=f"Deduplication failed: {str(e)}")

@app.post("/filter")
async def filter_screenshot_list(request: ScreenshotListRequest):
    try:
        screenshots = filter_screenshots(request.urls, request.platform)
        return {
            "screenshots": screenshots,
            "input_count": len(request.urls),
            "output_count": len(screenshots),
        }
    except Exception as e:
        logging.exception(f"Error filtering screenshots: {e}")
        raise HTTPException(status_code=500, detail=f"Filtering failed: {str(e)}")

@app.post("/validate")
async def validate_screenshots(request: ValidationRequest):
    """Validate a screenshot set against the live App Store (cached per app and country)"""
    validator = get_default_chain().validator
    result = await validator.validate(request, request.app_id, request.country)
    return {"app_id": request.app_id, "country": request.country, **result.to_dict()}

@app.delete("/validation-cache")
async def clear_validation_cache():
    validator = get_default_chain().validator
    cleared = len(validator.cache)
    validator.clear_cache()
    return {"status": "cleared", "entries_removed": cleared}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
